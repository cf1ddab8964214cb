# vendorhub/services.py
"""
Everything a request handler needs, built once per app by create_app() and
kept on ``app.state.services``.
"""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from vendorhub.config import Settings
from vendorhub.db import create_engine, create_sessionmaker
from vendorhub.shipments.import_rows import ShipmentImportProcessor
from vendorhub.shopify.admin_api import ShopifyAdminClient
from vendorhub.shopify.webhook_processor import WebhookProcessor
from vendorhub.stores.job_store import JobStore
from vendorhub.stores.order_store import OrderStore
from vendorhub.workers.claimer import JobClaimer
from vendorhub.workers.executors import build_executors
from vendorhub.workers.jobs_worker import JobRunner
from vendorhub.workers.retry import RetryPolicy
from vendorhub.workers.types import JobKind


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    jobs: JobStore
    orders: OrderStore
    shopify: ShopifyAdminClient
    runner: JobRunner


def build_services(settings: Settings) -> Services:
    engine = create_engine(settings.DATABASE_URL)
    sessionmaker = create_sessionmaker(engine)

    jobs = JobStore(
        sessionmaker,
        retry_delay_seconds=settings.JOB_RETRY_DELAY_SECONDS,
        retry_delay_max_seconds=settings.JOB_RETRY_DELAY_MAX_SECONDS,
    )
    orders = OrderStore(sessionmaker)
    shopify = ShopifyAdminClient(settings.SHOPIFY_API_VERSION, timeout=settings.SHOPIFY_HTTP_TIMEOUT)

    claimer = JobClaimer(jobs, {
        JobKind.WEBHOOK: settings.WEBHOOK_JOB_LIMIT_MAX,
        JobKind.SHIPMENT_IMPORT_ROW: settings.SHIPMENT_JOB_ITEM_LIMIT_MAX,
    })
    policy = RetryPolicy({
        JobKind.WEBHOOK: settings.WEBHOOK_JOB_MAX_ATTEMPTS,
        JobKind.SHIPMENT_IMPORT_ROW: settings.SHIPMENT_JOB_MAX_ATTEMPTS,
    })
    executors = build_executors(WebhookProcessor(orders, shopify), ShipmentImportProcessor(orders))
    runner = JobRunner(
        jobs, claimer, policy, executors,
        default_limits={
            JobKind.WEBHOOK: settings.WEBHOOK_JOB_LIMIT,
            JobKind.SHIPMENT_IMPORT_ROW: settings.SHIPMENT_JOB_ITEM_LIMIT,
        },
        store_timeout=settings.STORE_TIMEOUT_SECONDS,
        job_timeout=settings.JOB_EXECUTION_TIMEOUT_SECONDS,
    )
    return Services(
        settings=settings,
        engine=engine,
        sessionmaker=sessionmaker,
        jobs=jobs,
        orders=orders,
        shopify=shopify,
        runner=runner,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
