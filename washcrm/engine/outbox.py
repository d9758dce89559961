"""
Secondary-write outbox.

Some operations are a primary state transition followed by a best-effort side
effect (offer completed -> reminder batch, task completed -> event
reschedule). The primary write is done inline and must succeed. Side effects
are queued on an Outbox and flushed after the primary commit: each job is
retried on PersistenceError up to SECONDARY_WRITE_ATTEMPTS times, and a job
that still fails becomes a SecondaryWriteWarning on the result instead of an
exception.

Usage:
    outbox = Outbox()
    outbox.add('reschedule_event', store.update_followup_event, event_id, fields)
    results, warnings = outbox.flush()
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from washcrm.bus.events import bus, EVENT_SECONDARY_WRITE_FAILED
from washcrm.config import config
from washcrm.errors import PersistenceError
from washcrm.models import SecondaryWriteWarning

logger = logging.getLogger(__name__)


@dataclass
class SideEffectJob:
    name: str
    func: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


class Outbox:
    """Queue of side-effect jobs run after a primary transition."""

    def __init__(self, max_attempts: Optional[int] = None):
        self.max_attempts = max(1, max_attempts or config.SECONDARY_WRITE_ATTEMPTS)
        self._jobs: List[SideEffectJob] = []

    def add(self, name: str, func: Callable[..., Any], *args, **kwargs) -> SideEffectJob:
        job = SideEffectJob(name=name, func=func, args=args, kwargs=kwargs)
        self._jobs.append(job)
        return job

    def __len__(self):
        return len(self._jobs)

    def _run(self, job: SideEffectJob) -> Any:
        while True:
            job.attempts += 1
            try:
                return job.func(*job.args, **job.kwargs)
            except PersistenceError as e:
                if job.attempts >= self.max_attempts:
                    raise
                logger.warning(f"outbox | job={job.name} attempt {job.attempts} failed, retrying: {e}")

    def flush(self) -> Tuple[Dict[str, Any], List[SecondaryWriteWarning]]:
        """
        Run every queued job once (with retries). Never raises.
        Returns (results by job name, warnings for failed jobs).
        """
        results: Dict[str, Any] = {}
        warnings: List[SecondaryWriteWarning] = []

        jobs, self._jobs = self._jobs, []
        for job in jobs:
            try:
                results[job.name] = self._run(job)
            except Exception as e:
                if isinstance(e, PersistenceError):
                    e.secondary = True
                message = f"{type(e).__name__}: {e}"
                logger.error(f"outbox | job={job.name} failed after {job.attempts} attempt(s): {message}",
                             exc_info=True)
                warning = SecondaryWriteWarning(job=job.name, message=message)
                warnings.append(warning)
                bus.emit(EVENT_SECONDARY_WRITE_FAILED, {'job': job.name, 'error': message,
                                                        'attempts': job.attempts})
        return results, warnings
