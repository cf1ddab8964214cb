# vendorhub/models/jobs.py
from __future__ import annotations
from datetime import datetime
from typing import Any
from sqlalchemy import String, Integer, DateTime, Text, JSON, Enum, Index
from sqlalchemy.orm import Mapped, mapped_column
from vendorhub.db import Base
from vendorhub.workers.types import JobKind, JobStatus, JobRecord, utcnow


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        # claim scans by kind + status ordered by availability
        Index("ix_jobs_claim", "kind", "status", "available_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[JobKind] = mapped_column(
        Enum(JobKind, native_enum=False, length=32, values_callable=_enum_values), index=True
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, native_enum=False, length=32, values_callable=_enum_values),
        default=JobStatus.PENDING,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dedupe_key: Mapped[str | None] = mapped_column(String(191), unique=True, nullable=True)
    shop_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    topic: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_record(self) -> JobRecord:
        return JobRecord(
            id=self.id,
            kind=JobKind(self.kind),
            payload=dict(self.payload or {}),
            status=JobStatus(self.status),
            attempts=int(self.attempts or 0),
            claimed_at=self.claimed_at,
            completed_at=self.completed_at,
            last_error=self.last_error,
            available_at=self.available_at,
            dedupe_key=self.dedupe_key,
            shop_domain=self.shop_domain,
            topic=self.topic,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
