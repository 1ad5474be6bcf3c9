"""
Operational helpers: background jobs and structured logging.
"""

from .jobs import BackgroundRunner, JobStatus
from .telemetry import configure_logging, log_step, new_run_id

__all__ = [
    "BackgroundRunner",
    "JobStatus",
    "configure_logging",
    "log_step",
    "new_run_id",
]
