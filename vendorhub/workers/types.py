# vendorhub/workers/types.py
from __future__ import annotations

import enum
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    """Naive UTC; every timestamp column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class JobKind(str, enum.Enum):
    WEBHOOK = "webhook"
    SHIPMENT_IMPORT_ROW = "shipment_import_row"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.FAILED_RETRYABLE)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED_TERMINAL)


@dataclass(frozen=True)
class JobRecord:
    """Detached snapshot of a job row, handed to executors."""
    id: int
    kind: JobKind
    payload: Dict[str, Any]
    status: JobStatus
    attempts: int
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    available_at: Optional[datetime] = None
    dedupe_key: Optional[str] = None
    shop_domain: Optional[str] = None
    topic: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["kind"] = self.kind.value
        out["status"] = self.status.value
        for k in ("claimed_at", "completed_at", "available_at", "created_at", "updated_at"):
            v = out.get(k)
            out[k] = v.isoformat() + "Z" if v else None
        return out


@dataclass
class RunSummary:
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0

    def merge(self, other: "RunSummary") -> "RunSummary":
        self.claimed += other.claimed
        self.succeeded += other.succeeded
        self.failed += other.failed
        return self

    def to_dict(self) -> Dict[str, int]:
        return {"claimed": self.claimed, "succeeded": self.succeeded, "failed": self.failed}

