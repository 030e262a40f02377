"""FastAPI application factory.

Run with: uvicorn shopibot.serve:create_app --factory
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from shopibot import __version__
from shopibot.compliance.export import CustomerDataExporter
from shopibot.compliance.redaction import RedactionOrchestrator
from shopibot.config import Settings, configure_logging
from shopibot.storage.base import DataStore
from shopibot.webhooks.audit import AuditLog
from shopibot.webhooks.dispatcher import WebhookDispatcher
from shopibot.webhooks.handlers import register_webhook_routes
from shopibot.webhooks.idempotency import SeenWebhookStore
from shopibot.webhooks.verification import FreshnessGuard, SignatureVerifier

logger = logging.getLogger(__name__)


def build_dispatcher(
    settings: Settings,
    store: DataStore,
    seen_store: SeenWebhookStore | None = None,
    audit: AuditLog | None = None,
) -> WebhookDispatcher:
    """Wire the pipeline components from explicit settings."""
    if seen_store is None and settings.replay_dedup:
        seen_store = SeenWebhookStore.from_url(settings.redis_url, settings.max_age_seconds)
    return WebhookDispatcher(
        verifier=SignatureVerifier(settings.secret),
        freshness=FreshnessGuard(settings.max_age_seconds),
        orchestrator=RedactionOrchestrator(store),
        exporter=CustomerDataExporter(store),
        audit=audit,
        seen_store=seen_store,
    )


def create_app(
    settings: Settings | None = None,
    store: DataStore | None = None,
    seen_store: SeenWebhookStore | None = None,
) -> FastAPI:
    """Create the webhook service app.

    Without an explicit store, a PostgresStore is opened on
    ``settings.database_url`` and its tables are created at startup.
    """
    if settings is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)

    init_store = None
    if store is None:
        from shopibot.storage.postgres import PostgresStore

        store = PostgresStore(settings.database_url)
        init_store = store.init_tables

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_store is not None:
            await run_in_threadpool(init_store)
        yield

    app = FastAPI(title="Shopibot webhooks", version=__version__, lifespan=lifespan)
    dispatcher = build_dispatcher(settings, store, seen_store=seen_store)
    app.state.dispatcher = dispatcher
    register_webhook_routes(app, dispatcher)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info("Webhook service created: %r", settings)
    return app
