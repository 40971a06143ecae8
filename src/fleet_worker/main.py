"""CLI entrypoint for fleet-worker."""

import logging

import rich_click as click

from fleet_worker import __version__
from fleet_worker.worker.controllers import (
    WorkerCliController,
    WorkerStartCommand,
    shutdown_host,
)

click.rich_click.USE_MARKDOWN = True
WORKER_CONTROLLER = WorkerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="fleet-worker")
def fleet_worker() -> None:
    """Fleet worker CLI."""


@fleet_worker.command("start")
@click.option("--provisioner-id", default=None, help="provisionerId, defaults to aws-provisioner.")
@click.option(
    "--worker-type",
    default=None,
    help="workerType, defaults to instance type + AMI image id.",
)
@click.option("--worker-group", default=None, help="workerGroup, defaults to availability zone.")
@click.option("--worker-id", default=None, help="workerId, defaults to instance id.")
@click.option(
    "--shutdown",
    "-s",
    is_flag=True,
    default=False,
    help="Shut down the machine when the worker gives up.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def start(  # noqa: PLR0913
    provisioner_id: str | None,
    worker_type: str | None,
    worker_group: str | None,
    worker_id: str | None,
    shutdown: bool,
    log_level: str,
) -> None:
    """Claim and run tasks until failures or an empty queue exhaust the allowance."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        result = WORKER_CONTROLLER.run_worker(
            WorkerStartCommand(
                provisioner_id=provisioner_id,
                worker_type=worker_type,
                worker_group=worker_group,
                worker_id=worker_id,
            ),
        )
    except ValueError as error:
        raise click.UsageError(str(error)) from error

    _emit_lines(result.lines)
    if result.terminated:
        if shutdown:
            shutdown_host()
        raise SystemExit(1)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)
