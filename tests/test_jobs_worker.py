import asyncio

import pytest

from vendorhub.errors import JobStoreError, WebhookProcessingError
from vendorhub.models.audit_log import clear_audit_log, get_audit_log
from vendorhub.workers.claimer import JobClaimer
from vendorhub.workers.jobs_worker import JobRunner
from vendorhub.workers.retry import RetryPolicy
from vendorhub.workers.types import JobKind, JobStatus


class RecordingExecutor:
    """Fails for payloads flagged with ``fail``; remembers the order it saw jobs in."""

    def __init__(self):
        self.seen = []

    async def execute(self, job):
        self.seen.append(job.payload["n"])
        if job.payload.get("fail"):
            raise WebhookProcessingError(f"job {job.payload['n']} is broken")


def _runner(services, executor, *, max_attempts=5, store=None):
    store = store or services.jobs
    return JobRunner(
        store,
        JobClaimer(store),
        RetryPolicy({JobKind.WEBHOOK: max_attempts}),
        {JobKind.WEBHOOK: executor},
        default_limits={JobKind.WEBHOOK: 5},
    )


def test_batch_with_one_failure(run):
    clear_audit_log()
    executor = RecordingExecutor()

    async def scenario(s):
        ids = []
        for n, fail in ((1, False), (2, True), (3, False)):
            ids.append((await s.jobs.create_job(JobKind.WEBHOOK, {"n": n, "fail": fail})).id)
        summary = await _runner(s, executor).run(JobKind.WEBHOOK, limit=5)
        return summary, [await s.jobs.get_job(i) for i in ids]

    summary, jobs = run(scenario)
    assert summary.to_dict() == {"claimed": 3, "succeeded": 2, "failed": 1}
    assert executor.seen == [1, 2, 3]
    assert [j.status for j in jobs] == [JobStatus.COMPLETED, JobStatus.FAILED_RETRYABLE, JobStatus.COMPLETED]
    assert jobs[1].attempts == 1
    assert jobs[1].last_error == "job 2 is broken"
    actions = [e["action"] for e in get_audit_log()]
    assert actions.count("Job Completed") == 2
    assert "Job Failed" in actions


def test_empty_queue_returns_zero_summary(run):
    summary = run(lambda s: _runner(s, RecordingExecutor()).run(JobKind.WEBHOOK))
    assert summary.to_dict() == {"claimed": 0, "succeeded": 0, "failed": 0}


def test_job_becomes_terminal_after_max_attempts(run):
    executor = RecordingExecutor()

    async def scenario(s):
        job = await s.jobs.create_job(JobKind.WEBHOOK, {"n": 1, "fail": True})
        runner = _runner(s, executor, max_attempts=2)
        statuses = []
        for _ in range(4):
            await runner.run(JobKind.WEBHOOK)
            rec = await s.jobs.get_job(job.id)
            statuses.append((rec.status, rec.attempts))
        return statuses

    statuses = run(scenario)
    assert statuses == [
        (JobStatus.FAILED_RETRYABLE, 1),
        (JobStatus.FAILED_TERMINAL, 2),
        (JobStatus.FAILED_TERMINAL, 2),
        (JobStatus.FAILED_TERMINAL, 2),
    ]
    assert len(executor.seen) == 2


def test_single_attempt_job_runs_once(run):
    executor = RecordingExecutor()

    async def scenario(s):
        job = await s.jobs.create_job(JobKind.WEBHOOK, {"n": 1, "fail": True})
        runner = _runner(s, executor, max_attempts=1)
        for _ in range(5):
            await runner.run(JobKind.WEBHOOK)
        return await s.jobs.get_job(job.id)

    job = run(scenario)
    assert executor.seen == [1]
    assert job.status == JobStatus.FAILED_TERMINAL
    assert job.attempts == 1


def test_long_error_is_truncated(run):
    class Loud:
        async def execute(self, job):
            raise RuntimeError("x" * 1000)

    async def scenario(s):
        job = await s.jobs.create_job(JobKind.WEBHOOK, {"n": 1})
        await _runner(s, Loud()).run(JobKind.WEBHOOK)
        return await s.jobs.get_job(job.id)

    job = run(scenario)
    assert len(job.last_error) <= 240


def test_missing_executor_fails_the_job(run):
    async def scenario(s):
        job = await s.jobs.create_job(JobKind.WEBHOOK, {"n": 1})
        runner = JobRunner(s.jobs, JobClaimer(s.jobs), RetryPolicy(), {})
        summary = await runner.run(JobKind.WEBHOOK, limit=1)
        return summary, await s.jobs.get_job(job.id)

    summary, job = run(scenario)
    assert summary.failed == 1
    assert job.status == JobStatus.FAILED_RETRYABLE


class _BrokenClaimStore:
    async def claim(self, kind, limit):
        raise JobStoreError("database is down")


def test_claim_errors_propagate():
    runner = JobRunner(_BrokenClaimStore(), JobClaimer(_BrokenClaimStore()), RetryPolicy(), {})
    with pytest.raises(JobStoreError):
        asyncio.run(runner.run(JobKind.WEBHOOK, limit=1))


def test_failure_to_mark_does_not_abort_batch(run):
    class FlakyMarkStore:
        """Delegates to the real store but cannot record failures."""

        def __init__(self, inner):
            self.inner = inner

        async def claim(self, kind, limit):
            return await self.inner.claim(kind, limit)

        async def mark_completed(self, job_id):
            await self.inner.mark_completed(job_id)

        async def mark_failed(self, job_id, message, *, retryable):
            raise JobStoreError("write failed")

    async def scenario(s):
        for n, fail in ((1, True), (2, False)):
            await s.jobs.create_job(JobKind.WEBHOOK, {"n": n, "fail": fail})
        return await _runner(s, RecordingExecutor(), store=FlakyMarkStore(s.jobs)).run(JobKind.WEBHOOK)

    summary = run(scenario)
    assert summary.to_dict() == {"claimed": 2, "succeeded": 1, "failed": 1}


def test_run_passes_stops_when_queue_is_empty(run):
    executor = RecordingExecutor()

    async def scenario(s):
        for n in range(7):
            await s.jobs.create_job(JobKind.WEBHOOK, {"n": n})
        return await _runner(s, executor).run_passes(JobKind.WEBHOOK, 5, limit=3)

    summary = run(scenario)
    assert summary.to_dict() == {"claimed": 7, "succeeded": 7, "failed": 0}
    assert executor.seen == list(range(7))
