"""Fleet worker agent: claim queue tasks, run them under a lease, report results."""

__version__ = "0.2.0"
