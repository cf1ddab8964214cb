# vendorhub/workers/retry.py
from __future__ import annotations

from typing import Mapping, Optional

from vendorhub.workers.types import JobKind, JobRecord

DEFAULT_MAX_ATTEMPTS = 5


def should_retry(attempts: int, max_attempts: int) -> bool:
    """
    ``attempts`` counts every run so far, the one that just failed included.
    With max_attempts=5: 4 -> retry, 5 -> terminal.
    """
    return int(attempts) < int(max_attempts)


class RetryPolicy:
    """
    Single authority on whether a failed job may run again. Timing of the next
    attempt belongs to the job store (see JobStore.retry_delay).
    """

    def __init__(self, max_attempts: Optional[Mapping[JobKind, int]] = None, *, default_max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.default_max_attempts = max(1, int(default_max_attempts))
        self._max_attempts = {JobKind(k): max(1, int(v)) for k, v in (max_attempts or {}).items()}

    def max_attempts_for(self, kind: JobKind) -> int:
        return self._max_attempts.get(JobKind(kind), self.default_max_attempts)

    def decide(self, job: JobRecord, max_attempts: Optional[int] = None) -> bool:
        """Judge a claimed job that just failed; ``job.attempts`` does not count that run yet."""
        limit = max_attempts if max_attempts is not None else self.max_attempts_for(job.kind)
        return should_retry(job.attempts + 1, limit)
