# vendorhub/workers/executors.py
"""
One executor per job kind, selected through an explicit mapping.
Adding a kind means adding a JobKind member and an entry in build_executors().
"""
from __future__ import annotations

from typing import Dict, Protocol

from vendorhub.shipments.import_rows import ShipmentImportProcessor
from vendorhub.shopify.webhook_processor import WebhookProcessor
from vendorhub.workers.types import JobKind, JobRecord


class JobExecutor(Protocol):
    async def execute(self, job: JobRecord) -> None: ...


class WebhookJobExecutor:
    kind = JobKind.WEBHOOK

    def __init__(self, processor: WebhookProcessor) -> None:
        self.processor = processor

    async def execute(self, job: JobRecord) -> None:
        await self.processor.process(job)


class ShipmentImportRowExecutor:
    kind = JobKind.SHIPMENT_IMPORT_ROW

    def __init__(self, processor: ShipmentImportProcessor) -> None:
        self.processor = processor

    async def execute(self, job: JobRecord) -> None:
        await self.processor.process(job)


def build_executors(webhooks: WebhookProcessor, imports: ShipmentImportProcessor) -> Dict[JobKind, JobExecutor]:
    executors: Dict[JobKind, JobExecutor] = {
        JobKind.WEBHOOK: WebhookJobExecutor(webhooks),
        JobKind.SHIPMENT_IMPORT_ROW: ShipmentImportRowExecutor(imports),
    }
    missing = set(JobKind) - set(executors)
    if missing:
        raise RuntimeError(f"no executor for job kind(s): {sorted(k.value for k in missing)}")
    return executors
