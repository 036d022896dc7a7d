"""Translate domain and provider errors into HTTP errors."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException

from wabroker.domain.errors import (
    BrokerError,
    DuplicateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from wabroker.whatsapp.meta_client import SendError

_STATUS_BY_ERROR: list[tuple[type[BrokerError], int]] = [
    (ValidationError, 400),
    (UnauthorizedError, 401),
    (NotFoundError, 404),
    (DuplicateError, 409),
]


def status_for(exc: BrokerError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise BrokerError / SendError raised in the block as HTTPException.

    Example:
        with translate_errors():
            conversation = service.get(conversation_id)
    """
    try:
        yield
    except BrokerError as e:
        raise HTTPException(status_code=status_for(e), detail=str(e)) from e
    except SendError as e:
        detail: dict = {"message": str(e)}
        if e.error_code is not None:
            detail["provider_code"] = e.error_code
        raise HTTPException(status_code=502, detail=detail) from e
