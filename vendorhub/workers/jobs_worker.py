# ---------------------------
# vendorhub/workers/jobs_worker.py
# ---------------------------
"""
One processing pass: claim a batch, run each job in claim order, record the
outcome. Triggered externally (cron or an authenticated request); there is no
background loop here. Several passes may run at once in different workers,
the store's atomic claim keeps their batches disjoint.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Mapping, Optional

from vendorhub.errors import JobExecutionError, JobStoreError
from vendorhub.models.audit_log import add_audit_entry
from vendorhub.stores.job_store import JobStore
from vendorhub.workers.claimer import JobClaimer
from vendorhub.workers.executors import JobExecutor
from vendorhub.workers.retry import RetryPolicy
from vendorhub.workers.types import JobKind, JobRecord, RunSummary

logger = logging.getLogger("uvicorn.error")

MAX_ERROR_LENGTH = 240


def _error_message(exc: BaseException) -> str:
    msg = str(exc).strip() or exc.__class__.__name__
    return msg if len(msg) <= MAX_ERROR_LENGTH else msg[: MAX_ERROR_LENGTH - 1] + "…"


class JobRunner:
    def __init__(
        self,
        store: JobStore,
        claimer: JobClaimer,
        policy: RetryPolicy,
        executors: Mapping[JobKind, JobExecutor],
        *,
        default_limits: Optional[Mapping[JobKind, int]] = None,
        store_timeout: float = 10.0,
        job_timeout: float = 60.0,
    ) -> None:
        self.store = store
        self.claimer = claimer
        self.policy = policy
        self.executors = dict(executors)
        self.default_limits = {JobKind(k): int(v) for k, v in (default_limits or {}).items()}
        self.store_timeout = store_timeout
        self.job_timeout = job_timeout

    async def _store_call(self, aw: Awaitable[Any], op: str) -> Any:
        try:
            return await asyncio.wait_for(aw, timeout=self.store_timeout)
        except asyncio.TimeoutError as e:
            raise JobStoreError(f"job store {op} timed out after {self.store_timeout}s") from e

    async def run(self, kind: JobKind, *, limit: Optional[int] = None, max_attempts: Optional[int] = None) -> RunSummary:
        """
        Process one claimed batch of ``kind``. Store errors while claiming
        propagate; everything after the claim is recorded per job.
        """
        kind = JobKind(kind)
        if limit is None:
            limit = self.default_limits.get(kind, 1)
        if max_attempts is None:
            max_attempts = self.policy.max_attempts_for(kind)

        jobs = await self._store_call(self.claimer.claim(kind, limit), "claim")
        summary = RunSummary(claimed=len(jobs))
        if not jobs:
            return summary

        logger.info("[WORKER] processing %d %s job(s)", len(jobs), kind.value)
        for job in jobs:
            await self._handle_job(job, summary, max_attempts)

        logger.info("[WORKER] pass done kind=%s summary=%s", kind.value, summary.to_dict())
        return summary

    async def run_passes(self, kind: JobKind, passes: int, *, limit: Optional[int] = None) -> RunSummary:
        """Up to ``passes`` consecutive batches; stops at the first one that claims nothing."""
        total = RunSummary()
        for _ in range(max(1, int(passes))):
            summary = await self.run(kind, limit=limit)
            total.merge(summary)
            if summary.claimed == 0:
                break
        return total

    async def _handle_job(self, job: JobRecord, summary: RunSummary, max_attempts: int) -> None:
        add_audit_entry(f"Job Received: {job.kind.value}", "system", f"job={job.id} attempts={job.attempts} topic={job.topic}")
        try:
            executor = self.executors.get(job.kind)
            if executor is None:
                raise JobExecutionError(f"no executor registered for kind {job.kind.value}")
            await asyncio.wait_for(executor.execute(job), timeout=self.job_timeout)
        except Exception as e:
            await self._record_failure(job, e, summary, max_attempts)
            return

        try:
            await self._store_call(self.store.mark_completed(job.id), "mark_completed")
        except Exception:
            # the job stays claimed; the stale-claim release hands it back later
            logger.exception("[WORKER] could not mark job=%s completed", job.id)
            summary.failed += 1
            return
        summary.succeeded += 1
        add_audit_entry("Job Completed", "system", f"job={job.id} kind={job.kind.value}")

    async def _record_failure(self, job: JobRecord, exc: Exception, summary: RunSummary, max_attempts: int) -> None:
        summary.failed += 1
        message = _error_message(exc)
        retryable = self.policy.decide(job, max_attempts)
        log = logger.warning if retryable else logger.error
        log(
            "[WORKER] job=%s kind=%s shop=%s topic=%s attempts=%d retryable=%s failed: %s",
            job.id, job.kind.value, job.shop_domain, job.topic, job.attempts, retryable, message,
            exc_info=not isinstance(exc, JobExecutionError),
        )
        try:
            await self._store_call(self.store.mark_failed(job.id, message, retryable=retryable), "mark_failed")
        except Exception:
            logger.exception("[WORKER] could not record failure for job=%s", job.id)
            return
        if retryable:
            add_audit_entry("Job Failed", "system", f"job={job.id} kind={job.kind.value} error={message}")
        else:
            add_audit_entry("Job Terminal", "system", f"job={job.id} kind={job.kind.value} attempts={job.attempts + 1} error={message}")
