"""Webhook HTTP handlers: FastAPI routes for the mandatory Shopify webhooks.

Each handler:
1. Reads the raw body (needed for HMAC verification, never re-serialized)
2. Builds the WebhookEnvelope from headers
3. Runs the dispatcher in a worker thread
4. Returns the dispatcher's status and JSON body with webhook security headers

The dispatcher runs to completion even if the caller disconnects, so a
redaction transaction always either commits or rolls back.

Security contract:
- Return 401 only for signature/freshness failures, 400 for missing or
  mismatched topic/shop
- Dedicated routes only perform their own topic
- Every response is marked non-indexable and nosniff
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from shopibot.webhooks import topics
from shopibot.webhooks.dispatcher import DispatchResult, WebhookDispatcher
from shopibot.webhooks.envelope import WebhookEnvelope

logger = logging.getLogger(__name__)

WEBHOOK_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Robots-Tag": "noindex, nofollow",
}


def _respond(result: DispatchResult) -> JSONResponse:
    # JSONResponse sets Content-Type: application/json
    return JSONResponse(
        result.body,
        status_code=result.status_code,
        headers=WEBHOOK_SECURITY_HEADERS,
    )


async def handle_webhook(
    request: Request,
    dispatcher: WebhookDispatcher,
    expected_topic: str | None = None,
) -> JSONResponse:
    """Read the raw body and dispatch it.

    The generic route routes by X-Shopify-Topic. Dedicated routes pass
    ``expected_topic`` and a disagreeing header is rejected with 400.
    """
    body = await request.body()
    envelope = WebhookEnvelope.from_headers(request.headers, body)
    result = await run_in_threadpool(dispatcher.dispatch, envelope, expected_topic)
    return _respond(result)


def register_webhook_routes(app: FastAPI, dispatcher: WebhookDispatcher) -> None:
    """Register webhook endpoint routes on the FastAPI app."""

    @app.post("/webhooks")
    async def shopify_webhook(request: Request):
        """Receive any Shopify webhook (signature-verified)."""
        return await handle_webhook(request, dispatcher)

    @app.post("/webhooks/customers/data_request")
    async def customers_data_request(request: Request):
        """Compliance: customer data access request."""
        return await handle_webhook(request, dispatcher, topics.DATA_REQUEST)

    @app.post("/webhooks/customers/redact")
    async def customers_redact(request: Request):
        """Compliance: customer data erasure request."""
        return await handle_webhook(request, dispatcher, topics.CUSTOMERS_REDACT)

    @app.post("/webhooks/shop/redact")
    async def shop_redact(request: Request):
        """Compliance: shop data erasure, 48h after uninstall."""
        return await handle_webhook(request, dispatcher, topics.SHOP_REDACT)

    @app.post("/webhooks/app/uninstalled")
    async def app_uninstalled(request: Request):
        """Mandatory: app uninstalled by the merchant."""
        return await handle_webhook(request, dispatcher, topics.APP_UNINSTALLED)

    @app.get("/webhooks/status")
    async def webhook_status():
        """Webhook audit counts."""
        return JSONResponse(
            {"counts": dispatcher.audit.counts},
            headers=WEBHOOK_SECURITY_HEADERS,
        )

    logger.info("Webhook routes registered: /webhooks/{customers,shop,app}/...")
