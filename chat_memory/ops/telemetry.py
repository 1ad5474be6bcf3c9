"""
Structured logging for the turn pipeline and background jobs.
"""

import logging
import sys
import uuid
from typing import Any, Dict, Optional

import structlog


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Route structlog through stdlib logging with JSON (or console) rendering.

    Args:
        level: Minimum log level name
        json_output: Render JSON lines when True, human-readable otherwise
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def new_run_id() -> str:
    """Generate a new unique run ID."""
    return str(uuid.uuid4())


def log_step(
    run_id: str,
    step_name: str,
    ms: float,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log a pipeline step with timing.

    Args:
        run_id: Unique run identifier
        step_name: Name of the step (e.g., "context_assembled", "persisted")
        ms: Duration in milliseconds
        extra: Optional extra fields to log
    """
    logger.info(
        "turn_step",
        run_id=run_id,
        step=step_name,
        duration_ms=round(ms, 2),
        **(extra or {}),
    )
