"""Outbound WhatsApp messaging via Meta Cloud API (Graph API /messages).

Single attempt per call: retries belong to the caller, since a replayed send
would deliver twice. Failures surface as SendError with the provider detail.

Security: NEVER log the recipient or message body. Only hashes and sizes.
"""

from __future__ import annotations

import hashlib
import os
from typing import Any

import requests

from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import id_prefix, safe_log_context

from .models import SendResult

logger = get_logger(__name__)

DEFAULT_GRAPH_API_VERSION = "v18.0"
DEFAULT_GRAPH_BASE_URL = "https://graph.facebook.com"
DEFAULT_HTTP_TIMEOUT = 10


class SendError(Exception):
    """Provider rejected the request or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: int | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.detail = detail or {}


def _hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def _get_config(
    phone_number_id: str | None = None,
    access_token: str | None = None,
) -> dict[str, str]:
    """Get Meta Cloud API config from params or environment.

    Required (args or env): META_PHONE_NUMBER_ID, META_ACCESS_TOKEN.
    Optional env: META_GRAPH_API_VERSION, META_GRAPH_BASE_URL.
    """
    resolved_phone_number_id = phone_number_id or os.environ.get("META_PHONE_NUMBER_ID", "")
    resolved_access_token = access_token or os.environ.get("META_ACCESS_TOKEN", "")

    if not resolved_phone_number_id or not resolved_access_token:
        raise RuntimeError(
            "Missing Meta config: META_PHONE_NUMBER_ID and META_ACCESS_TOKEN required"
        )

    return {
        "phone_number_id": resolved_phone_number_id,
        "access_token": resolved_access_token,
        "api_version": os.environ.get("META_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION),
        "base_url": os.environ.get("META_GRAPH_BASE_URL", DEFAULT_GRAPH_BASE_URL).rstrip("/"),
    }


class MetaCloudClient:
    """Send capability backed by the Cloud API.

    Implements the `Sender` protocol of wabroker.domain.outbound.
    """

    def __init__(
        self,
        *,
        phone_number_id: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        config = _get_config(phone_number_id, access_token)
        self.phone_number_id = config["phone_number_id"]
        self._messages_url = (
            f"{config['base_url']}/{config['api_version']}/{self.phone_number_id}/messages"
        )
        self._timeout = timeout or float(
            os.environ.get("META_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)
        )
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {config['access_token']}",
                "Content-Type": "application/json",
            }
        )

    def _post(self, payload: dict[str, Any], log_ctx: dict[str, str]) -> dict[str, Any]:
        try:
            response = self._session.post(
                self._messages_url, json=payload, timeout=self._timeout
            )
        except requests.RequestException as e:
            logger.error(
                "meta request failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
            raise SendError(f"meta request failed: {type(e).__name__}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            error = body.get("error", {}) if isinstance(body, dict) else {}
            logger.error(
                "meta request rejected",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        status_code=response.status_code,
                        error_code=error.get("code"),
                    )
                },
            )
            raise SendError(
                error.get("message") or f"meta returned HTTP {response.status_code}",
                status_code=response.status_code,
                error_code=error.get("code"),
                detail=error,
            )

        try:
            return response.json()
        except ValueError:
            raise SendError(
                "meta returned a non-JSON body", status_code=response.status_code
            ) from None

    def send_message(
        self,
        to: str,
        message_type: str,
        body: Any,
        *,
        reply_to: str | None = None,
    ) -> SendResult:
        """Send one message.

        Args:
            to: Recipient wa_id / phone number. NEVER logged.
            message_type: Cloud API type tag.
            body: Object placed under the type key (list for contacts).
            reply_to: Optional wamid quoted as context.

        Returns:
            SendResult with the provider message id.

        Raises:
            SendError: Network failure, HTTP error or unexpected response.
        """
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": message_type,
            message_type: body,
        }
        if reply_to:
            payload["context"] = {"message_id": reply_to}

        log_ctx = safe_log_context(
            to_hash=_hash_identifier(to),
            message_type=message_type,
            provider="meta",
        )
        logger.info("sending outbound message via meta", extra={"extra_fields": log_ctx})

        data = self._post(payload, log_ctx)

        try:
            message = data["messages"][0]
            message_id = message["id"]
        except (KeyError, IndexError, TypeError):
            raise SendError("meta response carried no message id", detail=data) from None

        contacts = data.get("contacts") or []
        wa_id = contacts[0].get("wa_id") if contacts and isinstance(contacts[0], dict) else None

        logger.info(
            "outbound message sent via meta",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, message_id_prefix=id_prefix(message_id)
                )
            },
        )
        return SendResult(
            message_id=message_id,
            wa_id=wa_id,
            message_status=message.get("message_status"),
        )

    def mark_as_read(self, message_id: str) -> None:
        """Send a read receipt for an inbound message."""
        log_ctx = safe_log_context(message_id_prefix=id_prefix(message_id), provider="meta")
        self._post(
            {
                "messaging_product": "whatsapp",
                "status": "read",
                "message_id": message_id,
            },
            log_ctx,
        )
        logger.info("read receipt sent via meta", extra={"extra_fields": log_ctx})
