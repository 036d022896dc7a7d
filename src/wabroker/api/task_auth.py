"""Authentication for worker task routes (Cloud Scheduler / Cloud Tasks OIDC).

Production: a Google-signed OIDC token whose audience is TASKS_OIDC_AUDIENCE
(and, when TASKS_OIDC_SERVICE_ACCOUNT is set, whose email matches it).
Local dev: with TASKS_OIDC_AUDIENCE set to the local sentinel, the
X-Internal-Task-Secret header may carry INTERNAL_TASK_SECRET instead.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import safe_log_context

logger = get_logger(__name__)

LOCAL_DEV_AUDIENCE = "wabroker-tasks-local"
INTERNAL_SECRET_HEADER = "X-Internal-Task-Secret"


def extract_bearer_token(request: Request) -> str | None:
    """Return the token of an `Authorization: Bearer ...` header, else None."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[len("Bearer "):] or None


def verify_task_oidc(token: str) -> bool:
    """Verify a Google-signed OIDC token. Fails closed without an audience."""
    if not token:
        return False

    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "OIDC token verification failed",
            extra={"extra_fields": safe_log_context(error=str(e), expected_audience=audience)},
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email", "") != expected_email:
        logger.warning(
            "OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(expected_email=expected_email)},
        )
        return False
    return True


def _local_secret_matches(request: Request) -> bool:
    secret = os.environ.get("INTERNAL_TASK_SECRET", "")
    provided = request.headers.get(INTERNAL_SECRET_HEADER, "")
    return bool(secret) and hmac.compare_digest(provided.encode(), secret.encode())


def verify_task_auth(request: Request) -> bool:
    """True when the request carries valid task credentials."""
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == LOCAL_DEV_AUDIENCE and _local_secret_matches(
        request
    ):
        logger.info(
            "task auth via internal secret (local dev)",
            extra={"extra_fields": safe_log_context(auth_method="internal_secret")},
        )
        return True

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)
