# vendorhub/stores/job_store.py
"""
Durable job queue on top of SQLAlchemy (async).

The store owns every state transition of a job. ``claim`` is the only
synchronisation point between workers: each candidate row is taken with a
conditional UPDATE that succeeds only while the row is still claimable, so two
concurrent claimers can never both win the same job.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vendorhub.errors import JobStoreError
from vendorhub.models.jobs import Job
from vendorhub.workers.types import (
    CLAIMABLE_STATUSES,
    TERMINAL_STATUSES,
    JobKind,
    JobRecord,
    JobStatus,
    utcnow,
)

logger = logging.getLogger("uvicorn.error")

# extra candidates fetched per claim to absorb rows lost to a concurrent claimer
_CLAIM_SLACK = 5


class JobStore:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        retry_delay_seconds: float = 30.0,
        retry_delay_max_seconds: float = 900.0,
    ) -> None:
        self._sessionmaker = sessionmaker
        self.retry_delay_seconds = max(0.0, float(retry_delay_seconds))
        self.retry_delay_max_seconds = max(0.0, float(retry_delay_max_seconds))

    # ---------------------------
    # Helpers
    # ---------------------------

    @asynccontextmanager
    async def _session(self, op: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessionmaker() as session:
                yield session
        except JobStoreError:
            raise
        except SQLAlchemyError as e:
            logger.error("[JOBS] store operation %s failed: %s", op, e)
            raise JobStoreError(f"job store {op} failed") from e

    def retry_delay(self, attempts: int) -> timedelta:
        """Exponential delay before a retryable job becomes claimable again."""
        if self.retry_delay_seconds <= 0 or attempts <= 0:
            return timedelta(0)
        seconds = self.retry_delay_seconds * (2 ** (attempts - 1))
        if self.retry_delay_max_seconds:
            seconds = min(seconds, self.retry_delay_max_seconds)
        return timedelta(seconds=seconds)

    # ---------------------------
    # Create / read
    # ---------------------------

    async def create_job(
        self,
        kind: JobKind,
        payload: Dict[str, Any],
        *,
        dedupe_key: Optional[str] = None,
        shop_domain: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> JobRecord:
        """
        Insert a pending job. When ``dedupe_key`` matches an existing job that job
        is returned unchanged, so redelivered events are enqueued once.
        """
        kind = JobKind(kind)
        async with self._session("create_job") as session:
            if dedupe_key:
                existing = await self._find_by_dedupe_key(session, dedupe_key)
                if existing is not None:
                    logger.info("[JOBS] duplicate enqueue ignored kind=%s key=%s job=%s", kind.value, dedupe_key, existing.id)
                    return existing.to_record()

            now = utcnow()
            job = Job(
                kind=kind,
                payload=payload,
                status=JobStatus.PENDING,
                attempts=0,
                dedupe_key=dedupe_key,
                shop_domain=shop_domain,
                topic=topic,
                available_at=now,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            try:
                await session.commit()
            except IntegrityError:
                # lost an enqueue race on the same dedupe key
                await session.rollback()
                if not dedupe_key:
                    raise
                existing = await self._find_by_dedupe_key(session, dedupe_key)
                if existing is None:
                    raise
                return existing.to_record()
            await session.refresh(job)
            logger.info("[JOBS] enqueued job=%s kind=%s", job.id, kind.value)
            return job.to_record()

    @staticmethod
    async def _find_by_dedupe_key(session: AsyncSession, dedupe_key: str) -> Optional[Job]:
        res = await session.execute(select(Job).where(Job.dedupe_key == dedupe_key))
        return res.scalar_one_or_none()

    async def get_job(self, job_id: int) -> Optional[JobRecord]:
        async with self._session("get_job") as session:
            job = await session.get(Job, job_id)
            return job.to_record() if job else None

    async def list_jobs(
        self,
        *,
        kind: Optional[JobKind] = None,
        status: Optional[JobStatus] = None,
        limit: int = 50,
    ) -> List[JobRecord]:
        stmt = select(Job).order_by(Job.id.desc()).limit(max(1, min(int(limit), 500)))
        if kind is not None:
            stmt = stmt.where(Job.kind == JobKind(kind))
        if status is not None:
            stmt = stmt.where(Job.status == JobStatus(status))
        async with self._session("list_jobs") as session:
            res = await session.execute(stmt)
            return [j.to_record() for j in res.scalars().all()]

    # ---------------------------
    # Lifecycle
    # ---------------------------

    async def claim(self, kind: JobKind, limit: int) -> List[JobRecord]:
        """
        Atomically move up to ``limit`` eligible jobs of ``kind`` to ``claimed``.
        Returned in claim order (oldest availability first).
        """
        kind = JobKind(kind)
        limit = max(1, int(limit))
        async with self._session("claim") as session:
            now = utcnow()
            candidates = await session.execute(
                select(Job.id)
                .where(
                    Job.kind == kind,
                    Job.status.in_(CLAIMABLE_STATUSES),
                    Job.available_at <= now,
                )
                .order_by(Job.available_at.asc(), Job.id.asc())
                .limit(limit + _CLAIM_SLACK)
            )
            won: List[int] = []
            for job_id in candidates.scalars().all():
                if len(won) >= limit:
                    break
                res = await session.execute(
                    update(Job)
                    .where(Job.id == job_id, Job.status.in_(CLAIMABLE_STATUSES))
                    .values(status=JobStatus.CLAIMED, claimed_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount == 1:
                    won.append(job_id)
            await session.commit()

            if not won:
                return []
            rows = await session.execute(select(Job).where(Job.id.in_(won)))
            by_id = {j.id: j.to_record() for j in rows.scalars().all()}
            logger.info("[JOBS] claimed %d %s job(s): %s", len(won), kind.value, won)
            return [by_id[i] for i in won if i in by_id]

    async def mark_completed(self, job_id: int) -> None:
        """Terminal and idempotent: completing a completed job is a no-op."""
        async with self._session("mark_completed") as session:
            now = utcnow()
            res = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status.not_in(TERMINAL_STATUSES))
                .values(
                    status=JobStatus.COMPLETED,
                    completed_at=now,
                    claimed_at=None,
                    last_error=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if res.rowcount == 1:
                return
            job = await session.get(Job, job_id)
            if job is None:
                raise JobStoreError(f"job {job_id} not found")
            if job.status != JobStatus.COMPLETED:
                logger.warning("[JOBS] job=%s is %s; completion ignored", job_id, job.status.value)

    async def mark_failed(self, job_id: int, message: str, *, retryable: bool) -> Optional[JobRecord]:
        """
        Record a failed attempt. Retryable jobs become claimable again after the
        configured backoff; terminal ones are never claimed again.
        """
        async with self._session("mark_failed") as session:
            job = await session.get(Job, job_id)
            if job is None:
                raise JobStoreError(f"job {job_id} not found")
            if job.status in TERMINAL_STATUSES:
                logger.warning("[JOBS] job=%s already %s; failure ignored", job_id, job.status.value)
                return job.to_record()

            now = utcnow()
            attempts = int(job.attempts or 0) + 1
            job.attempts = attempts
            job.last_error = message
            job.claimed_at = None
            job.updated_at = now
            if retryable:
                job.status = JobStatus.FAILED_RETRYABLE
                job.available_at = now + self.retry_delay(attempts)
            else:
                job.status = JobStatus.FAILED_TERMINAL
            await session.commit()
            return job.to_record()

    async def release_stale_claims(self, older_than_seconds: float, *, limit: int = 100) -> int:
        """
        Return jobs stuck in ``claimed`` (worker died or timed out) to the queue.
        Attempts are left alone: the job never reported an outcome.
        """
        async with self._session("release_stale_claims") as session:
            now = utcnow()
            cutoff = now - timedelta(seconds=max(0.0, float(older_than_seconds)))
            res = await session.execute(
                select(Job.id)
                .where(Job.status == JobStatus.CLAIMED, Job.claimed_at <= cutoff)
                .order_by(Job.claimed_at.asc())
                .limit(max(1, int(limit)))
            )
            released = 0
            for job_id in res.scalars().all():
                upd = await session.execute(
                    update(Job)
                    .where(Job.id == job_id, Job.status == JobStatus.CLAIMED, Job.claimed_at <= cutoff)
                    .values(
                        status=JobStatus.FAILED_RETRYABLE,
                        claimed_at=None,
                        available_at=now,
                        last_error="claim expired before the job reported an outcome",
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                released += upd.rowcount or 0
            await session.commit()
            if released:
                logger.warning("[JOBS] released %d stale claim(s)", released)
            return released
