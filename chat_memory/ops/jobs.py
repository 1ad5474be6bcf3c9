"""
Background job runner for fire-and-forget work.

Runs callables on a thread pool and keeps an in-memory status record
for each job. Failures are logged and recorded, never re-raised.
"""

import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

import structlog


logger = structlog.get_logger(__name__)

JobState = Literal["queued", "running", "succeeded", "failed"]


@dataclass
class JobStatus:
    """Status of a background job."""

    id: str
    name: str
    state: JobState
    message: str = ""
    submitted_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return asdict(self)


class BackgroundRunner:
    """
    In-process job runner backed by a thread pool.

    Usage:
        >>> runner = BackgroundRunner(max_workers=2)
        >>> job_id = runner.submit("reflection", synthesizer.synthesize, "u1", "conv_1")
        >>> runner.wait_idle(timeout=5)
    """

    def __init__(self, max_workers: int = 2, max_history: int = 1000):
        """
        Initialize job runner.

        Args:
            max_workers: Max concurrent jobs
            max_history: Finished job records kept for ``get`` and ``list``;
                older ones are dropped first
        """
        self.max_workers = max_workers
        self.max_history = max_history
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="chat-memory-job",
        )
        self.jobs: Dict[str, JobStatus] = {}
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(self, name: str, worker_fn: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        """
        Schedule ``worker_fn(*args, **kwargs)`` without waiting for it.

        Args:
            name: Job type label for logs
            worker_fn: Callable to execute

        Returns:
            Job ID

        Raises:
            RuntimeError: If the runner has been shut down
        """
        job_id = str(uuid.uuid4())
        job = JobStatus(id=job_id, name=name, state="queued", message=f"Queued {name}")

        with self._lock:
            self.jobs[job_id] = job
            future = self.executor.submit(self._run_job, job_id, worker_fn, args, kwargs)
            self._futures[job_id] = future

        logger.debug("job_submitted", job_id=job_id, job_name=name)
        return job_id

    def _run_job(self, job_id: str, worker_fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        """Execute job with state tracking."""
        job = self.jobs[job_id]
        job.state = "running"
        job.started_at = time.time()
        job.message = "Starting..."

        try:
            worker_fn(*args, **kwargs)
        except Exception as exc:
            job.state = "failed"
            job.error = str(exc)
            job.message = f"Failed: {exc}"
            logger.error("job_failed", job_id=job_id, job_name=job.name, exc_info=True)
        else:
            job.state = "succeeded"
            job.message = "Completed successfully"
            logger.debug("job_succeeded", job_id=job_id, job_name=job.name)
        finally:
            job.finished_at = time.time()
            with self._lock:
                self._futures.pop(job_id, None)
                self._prune_history()

    def _prune_history(self) -> None:
        """Drop the oldest finished records beyond ``max_history``. Caller holds the lock."""
        finished = [job_id for job_id, job in self.jobs.items() if job.finished_at is not None]
        for job_id in finished[:max(len(finished) - self.max_history, 0)]:
            del self.jobs[job_id]

    def get(self, job_id: str) -> Optional[JobStatus]:
        """Get job status by ID."""
        return self.jobs.get(job_id)

    def list(self, state: Optional[JobState] = None) -> List[JobStatus]:
        """
        List all jobs, optionally filtered by state.

        Args:
            state: Filter by state (queued, running, succeeded, failed)

        Returns:
            List of JobStatus objects, most recently submitted first
        """
        with self._lock:
            jobs = list(self.jobs.values())

        if state:
            jobs = [j for j in jobs if j.state == state]

        jobs.sort(key=lambda j: j.submitted_at, reverse=True)
        return jobs

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every submitted job has finished.

        Returns:
            True if all jobs finished within the timeout
        """
        with self._lock:
            futures = list(self._futures.values())

        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown executor."""
        self.executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown(wait=True)
