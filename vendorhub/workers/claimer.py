# vendorhub/workers/claimer.py
from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from vendorhub.config import clamp
from vendorhub.stores.job_store import JobStore
from vendorhub.workers.types import JobKind, JobRecord

logger = logging.getLogger("uvicorn.error")

DEFAULT_CEILINGS = {
    JobKind.WEBHOOK: 50,
    JobKind.SHIPMENT_IMPORT_ROW: 100,
}


class JobClaimer:
    """
    Requests a bounded batch from the store. Locking is the store's job; this
    class only keeps one pass from taking more than the per-kind ceiling.
    """

    def __init__(self, store: JobStore, ceilings: Optional[Mapping[JobKind, int]] = None) -> None:
        self.store = store
        self.ceilings = dict(DEFAULT_CEILINGS)
        for kind, ceiling in (ceilings or {}).items():
            self.ceilings[JobKind(kind)] = max(1, int(ceiling))

    def ceiling_for(self, kind: JobKind) -> int:
        return self.ceilings.get(JobKind(kind), 1)

    def bound(self, kind: JobKind, limit) -> int:
        return clamp(limit, 1, self.ceiling_for(kind))

    async def claim(self, kind: JobKind, limit) -> List[JobRecord]:
        kind = JobKind(kind)
        bounded = self.bound(kind, limit)
        if bounded != limit:
            logger.info("[WORKER] claim limit %r for %s bounded to %d", limit, kind.value, bounded)
        jobs = await self.store.claim(kind, bounded)
        return list(jobs)[:bounded]
