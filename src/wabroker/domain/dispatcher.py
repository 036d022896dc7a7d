"""Webhook dispatcher - audit log + ordered fan-out of a webhook batch.

Lifecycle of one batch:
    record()  -> webhook_logs row, status "pending"
    process() -> every event through the engine, sequentially, payload order
              -> "processed" + processed_at on success
              -> "failed" + error on the first exception, then re-raise

The log transitions run in their own short transactions so that a failed
event's rollback never loses the failure record. The retry sweep picks
failed logs back up; only the sweep touches retry_count.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from wabroker.domain.models import WebhookLog
from wabroker.domain.reconciliation import ReconciliationEngine
from wabroker.domain.repositories import UnitOfWork
from wabroker.infra.time import utc_now
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import safe_log_context
from wabroker.whatsapp.meta_adapter import iter_events
from wabroker.whatsapp.models import InboundMessageEvent

logger = get_logger(__name__)

WEBHOOK_EVENT_TYPE = "whatsapp_webhook"

# Max length of the error text kept on a failed log
_ERROR_MAX_LENGTH = 2000


@dataclass(frozen=True)
class BatchResult:
    messages: int = 0
    statuses: int = 0
    duplicates: int = 0
    unknown_statuses: int = 0


@dataclass(frozen=True)
class RetrySummary:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


def _error_text(exc: BaseException) -> str:
    text = str(exc) or type(exc).__name__
    return f"{type(exc).__name__}: {text}"[:_ERROR_MAX_LENGTH]


class WebhookDispatcher:
    """Runs webhook batches through the reconciliation engine.

    Args:
        unit_of_work: Factory of transactional repository bundles.
        engine: Reconciliation engine applying single events.
    """

    def __init__(self, unit_of_work: UnitOfWork, engine: ReconciliationEngine) -> None:
        self._unit_of_work = unit_of_work
        self._engine = engine

    def record(
        self, payload: dict[str, Any], event_type: str = WEBHOOK_EVENT_TYPE
    ) -> WebhookLog:
        """Persist the raw batch before any processing (status "pending")."""
        with self._unit_of_work() as repos:
            log = repos.webhook_logs.create(event_type=event_type, payload=payload)

        logger.info(
            "webhook batch recorded",
            extra={"extra_fields": safe_log_context(webhook_log_id=log.id)},
        )
        return log

    def process(self, log: WebhookLog) -> BatchResult:
        """Apply every event of a recorded batch, in order.

        Raises:
            Exception: Whatever the engine raised; the log is marked failed first.
        """
        messages = statuses = duplicates = unknown = 0

        try:
            for event in iter_events(log.payload):
                if isinstance(event, InboundMessageEvent):
                    messages += 1
                    if self._engine.handle_incoming_message(event) is None:
                        duplicates += 1
                else:
                    statuses += 1
                    if self._engine.handle_status_update(event) is None:
                        unknown += 1
        except Exception as e:
            with self._unit_of_work() as repos:
                repos.webhook_logs.mark_failed(log.id, _error_text(e))
            logger.exception(
                "webhook batch failed",
                extra={
                    "extra_fields": safe_log_context(
                        webhook_log_id=log.id,
                        messages_done=messages,
                        statuses_done=statuses,
                    )
                },
            )
            raise

        with self._unit_of_work() as repos:
            repos.webhook_logs.mark_processed(log.id, utc_now())

        result = BatchResult(
            messages=messages,
            statuses=statuses,
            duplicates=duplicates,
            unknown_statuses=unknown,
        )
        logger.info(
            "webhook batch processed",
            extra={
                "extra_fields": safe_log_context(
                    webhook_log_id=log.id,
                    messages=result.messages,
                    statuses=result.statuses,
                    duplicates=result.duplicates,
                    unknown_statuses=result.unknown_statuses,
                )
            },
        )
        return result

    def ingest(self, payload: dict[str, Any]) -> WebhookLog:
        """Record and process a batch synchronously.

        Returns:
            The log as recorded (status reflects the pre-processing state).

        Raises:
            Exception: Propagated from process().
        """
        log = self.record(payload)
        self.process(log)
        return log

    def process_by_id(self, log_id: str) -> BatchResult:
        """Load a recorded batch and process it (background entry point)."""
        with self._unit_of_work() as repos:
            log = repos.webhook_logs.get(log_id)
        return self.process(log)

    def retry_failed(self, max_retries: int = 3, limit: int = 100) -> RetrySummary:
        """Re-run failed batches whose retry_count is below max_retries.

        Oldest first. The logs are claimed (back to "pending") before they
        run, so an overlapping sweep skips them. A renewed failure increments
        retry_count; a success leaves the log "processed" via process().
        """
        with self._unit_of_work() as repos:
            logs = repos.webhook_logs.claim_retryable(max_retries=max_retries, limit=limit)

        succeeded = failed = 0
        for log in logs:
            try:
                self.process(log)
            except Exception:
                failed += 1
                with self._unit_of_work() as repos:
                    repos.webhook_logs.increment_retry_count(log.id)
            else:
                succeeded += 1

        summary = RetrySummary(attempted=len(logs), succeeded=succeeded, failed=failed)
        logger.info(
            "webhook retry sweep finished",
            extra={
                "extra_fields": safe_log_context(
                    attempted=summary.attempted,
                    succeeded=summary.succeeded,
                    failed=summary.failed,
                    max_retries=max_retries,
                )
            },
        )
        return summary
