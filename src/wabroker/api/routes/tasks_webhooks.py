"""Worker route for the failed-webhook retry sweep.

POST /tasks/webhooks/retry-failed - called on a schedule (Cloud Scheduler).
Only accepts requests with valid task credentials (see task_auth).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from wabroker.api.deps import get_dispatcher, get_webhook_max_retries
from wabroker.api.task_auth import verify_task_auth
from wabroker.domain.dispatcher import WebhookDispatcher
from wabroker.observability.correlation import get_correlation_id
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/webhooks", tags=["tasks"])

logger = get_logger(__name__)


@router.post("/retry-failed")
def retry_failed_webhooks(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    max_retries: int = Depends(get_webhook_max_retries),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> dict:
    """Re-run failed batches whose retry_count is below WEBHOOK_MAX_RETRIES.

    Returns:
        Sweep summary (attempted / succeeded / failed).
    """
    correlation_id = get_correlation_id()

    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    summary = dispatcher.retry_failed(max_retries=max_retries, limit=limit)
    return {
        "ok": True,
        "attempted": summary.attempted,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
    }
