"""Held-lease state and the background renewer that keeps it alive."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from fleet_worker.worker.errors import LeaseLost
from fleet_worker.worker.models import ClaimReply, TaskClaim, WorkerIdentity, utc_now
from fleet_worker.worker.queue_client import QueueClient

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_MARGIN_SECONDS = 180.0


class LeaseState:
    """Holds at most one claimed task for this agent."""

    def __init__(self) -> None:
        self._claim: TaskClaim | None = None

    def hold(self, claim: TaskClaim) -> None:
        if self._claim is not None:
            logger.warning(
                "Discarding previously held claim on task %s (run %s) for task %s",
                self._claim.task_id,
                self._claim.run_id,
                claim.task_id,
            )
        self._claim = claim

    def clear(self) -> None:
        self._claim = None

    def is_held(self) -> bool:
        return self._claim is not None

    @property
    def claim(self) -> TaskClaim:
        if self._claim is None:
            raise RuntimeError("No task lease is currently held.")
        return self._claim

    def renew(self, reply: ClaimReply) -> None:
        """Apply a reclaim reply; the new expiry must move the lease forward."""

        claim = self.claim
        if reply.taken_until <= claim.taken_until:
            raise LeaseLost(
                f"Stale reclaim for task {claim.task_id}: takenUntil "
                f"{reply.taken_until.isoformat()} does not extend "
                f"{claim.taken_until.isoformat()}",
            )
        claim.taken_until = reply.taken_until
        claim.logs_put_url = reply.logs_put_url
        claim.result_put_url = reply.result_put_url


class LeaseRenewer:
    """Reclaims the held task shortly before ``takenUntil`` until stopped.

    A lease shorter than the margin is renewed halfway to its expiry instead.
    The renewer thread is the only writer of lease fields while it runs.
    Callers read the lease again only after :meth:`stop` has returned, which
    joins the thread. A single failed reclaim calls ``on_abort`` once and ends
    renewal.
    """

    def __init__(
        self,
        *,
        client: QueueClient,
        identity: WorkerIdentity,
        renewal_margin_seconds: float = DEFAULT_RENEWAL_MARGIN_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.identity = identity
        self.renewal_margin_seconds = renewal_margin_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._aborted = False
        self._reclaims = 0

    @property
    def aborted(self) -> bool:
        return self._aborted

    def start(self, lease_state: LeaseState, on_abort: Callable[[], None]) -> None:
        if self._thread is not None:
            raise RuntimeError("LeaseRenewer was already started.")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._renew_loop,
            args=(lease_state, on_abort),
            daemon=True,
            name=f"lease-renewer-{lease_state.claim.task_id}",
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join()

    def seconds_until_renewal(self, claim: TaskClaim) -> float:
        remaining = (claim.taken_until - self._clock()).total_seconds()
        if remaining <= self.renewal_margin_seconds:
            return max(0.0, remaining / 2)
        return remaining - self.renewal_margin_seconds

    def _renew_loop(self, lease_state: LeaseState, on_abort: Callable[[], None]) -> None:
        while True:
            claim = lease_state.claim
            if self._stop.wait(timeout=self.seconds_until_renewal(claim)):
                return
            try:
                reply = self.client.reclaim(self.identity, claim.task_id, claim.run_id)
                lease_state.renew(reply)
            except Exception as error:  # noqa: BLE001
                logger.warning("Failed to reclaim task %s: %s", claim.task_id, error)
                self._fire_abort(on_abort)
                return
            self._reclaims += 1
            logger.info(
                "Reclaimed task %s (renewal %d), lease now held until %s",
                claim.task_id,
                self._reclaims,
                claim.taken_until.isoformat(),
            )

    def _fire_abort(self, on_abort: Callable[[], None]) -> None:
        if self._aborted:
            return
        self._aborted = True
        try:
            on_abort()
        except Exception:
            logger.exception("Abort hook raised while handling lost lease")
