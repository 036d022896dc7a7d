"""WhatsApp Cloud API webhook routes.

GET  /webhooks/whatsapp -> subscription verification (hub.challenge echo)
POST /webhooks/whatsapp -> batch ingestion

IMPORTANT: POST always answers 200, whatever happens downstream. Meta
retries non-2xx deliveries aggressively; correctness comes from the
webhook_logs audit trail and the retry sweep instead. The batch is recorded
before the response and processed in a background task after it.

Logs carry no PII: wa ids are masked, message bodies never logged.
"""

from __future__ import annotations

import json
import os
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from wabroker.api.deps import get_dispatcher
from wabroker.domain.dispatcher import WebhookDispatcher
from wabroker.observability.correlation import correlation_scope, get_correlation_id
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import safe_log_context
from wabroker.whatsapp.meta_adapter import (
    SignatureVerificationError,
    get_phone_number_id,
    is_whatsapp_payload,
    verify_signature,
)

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


def _ok() -> Response:
    return Response(status_code=200, content="ok")


def process_recorded_batch(
    dispatcher: WebhookDispatcher, log_id: str, correlation_id: str
) -> None:
    """Background entry point: run one recorded batch under the request's correlation id."""
    with correlation_scope(correlation_id):
        try:
            dispatcher.process_by_id(log_id)
        except Exception:
            # Already logged and marked failed by the dispatcher
            logger.warning(
                "webhook batch left for retry sweep",
                extra={"extra_fields": safe_log_context(webhook_log_id=log_id)},
            )


@router.get("")
async def whatsapp_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
) -> Response:
    """Echo hub.challenge when hub.verify_token matches META_VERIFY_TOKEN.

    Returns:
        200 with the challenge, 403 otherwise.
    """
    expected_token = os.environ.get("META_VERIFY_TOKEN", "")

    if expected_token and hub_mode == "subscribe" and hub_verify_token == expected_token:
        logger.info(
            "whatsapp webhook verification successful",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
        )
        return Response(status_code=200, content=hub_challenge or "")

    logger.warning(
        "whatsapp webhook verification failed",
        extra={
            "extra_fields": safe_log_context(
                hub_mode=hub_mode or "missing",
                token_configured=bool(expected_token),
            )
        },
    )
    return Response(status_code=403, content="verification failed")


@router.post("")
async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Response:
    """Receive one webhook batch.

    Steps: raw body -> signature check (when META_APP_SECRET is set) -> JSON
    -> object type filter -> webhook_logs row -> background processing.

    Returns:
        200 OK always.
    """
    correlation_id = get_correlation_id()

    # 1. Raw body, needed as-is for the signature
    try:
        body_bytes = await request.body()
    except Exception:
        logger.warning(
            "failed to read request body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ok()

    # 2. Signature
    app_secret = os.environ.get("META_APP_SECRET", "")
    if app_secret:
        try:
            verify_signature(body_bytes, x_hub_signature_256 or "", app_secret)
        except SignatureVerificationError as e:
            logger.warning(
                "whatsapp signature verification failed",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
            )
            return _ok()

    # 3. JSON
    try:
        payload: Any = json.loads(body_bytes)
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ok()

    # 4. Only WhatsApp Business Account notifications
    if not is_whatsapp_payload(payload):
        logger.debug(
            "non-whatsapp webhook ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    object_type=payload.get("object") if isinstance(payload, dict) else "invalid",
                )
            },
        )
        return _ok()

    # 5. Audit row first, then processing after the response
    try:
        log = await run_in_threadpool(dispatcher.record, payload)
    except Exception:
        logger.exception(
            "failed to record webhook batch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ok()

    logger.info(
        "whatsapp webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                webhook_log_id=log.id,
                phone_number_id_present=bool(get_phone_number_id(payload)),
            )
        },
    )
    background_tasks.add_task(process_recorded_batch, dispatcher, log.id, correlation_id)
    return _ok()
