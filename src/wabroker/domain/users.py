"""User profile operations - update, block/unblock, tags, custom fields.

Users are created only by reconciliation (first message seen) or by an
outbound send; they are never deleted here.
"""

from __future__ import annotations

from typing import Any

from wabroker.domain.conversations import normalize_tags
from wabroker.domain.errors import NotFoundError, ValidationError
from wabroker.domain.models import CustomFieldValue, User
from wabroker.domain.repositories import UnitOfWork
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import mask_wa_id, safe_log_context

logger = get_logger(__name__)

# Nested custom field mappings deeper than this are rejected
MAX_CUSTOM_FIELD_DEPTH = 3


def validate_custom_fields(
    fields: Any, depth: int = 0
) -> dict[str, CustomFieldValue]:
    """Check that custom fields map str -> str | number | bool | nested mapping.

    Raises:
        ValidationError: Any other key or value type (lists, None, ...).
    """
    if not isinstance(fields, dict):
        raise ValidationError("custom_fields must be an object")
    if depth > MAX_CUSTOM_FIELD_DEPTH:
        raise ValidationError("custom_fields nested too deeply")

    for key, value in fields.items():
        if not isinstance(key, str) or not key:
            raise ValidationError("custom_fields keys must be non-empty strings")
        if isinstance(value, dict):
            validate_custom_fields(value, depth + 1)
        elif not isinstance(value, (str, int, float, bool)):
            raise ValidationError(
                f"custom_fields.{key} must be a string, number, boolean or object"
            )
    return fields


class UserService:
    def __init__(self, unit_of_work: UnitOfWork) -> None:
        self._unit_of_work = unit_of_work

    def get(self, user_id: str) -> User:
        with self._unit_of_work() as repos:
            return repos.users.get(user_id)

    def get_by_wa_id(self, wa_id: str) -> User:
        with self._unit_of_work() as repos:
            user = repos.users.find_by_wa_id(wa_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update(
        self,
        wa_id: str,
        *,
        name: str | None = None,
        profile_picture: str | None = None,
        custom_fields: dict[str, Any] | None = None,
    ) -> User:
        """Partial profile update. custom_fields replaces the whole mapping."""
        fields: dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("name must not be blank")
            fields["name"] = name.strip()
        if profile_picture is not None:
            fields["profile_picture"] = profile_picture
        if custom_fields is not None:
            fields["custom_fields"] = validate_custom_fields(custom_fields)
        if not fields:
            raise ValidationError("nothing to update")

        with self._unit_of_work() as repos:
            return repos.users.update(wa_id, fields)

    def _set_blocked(self, wa_id: str, blocked: bool) -> User:
        with self._unit_of_work() as repos:
            user = repos.users.update(wa_id, {"is_blocked": blocked})
        logger.info(
            "user blocked" if blocked else "user unblocked",
            extra={"extra_fields": safe_log_context(wa_id=mask_wa_id(wa_id))},
        )
        return user

    def block(self, wa_id: str) -> User:
        return self._set_blocked(wa_id, True)

    def unblock(self, wa_id: str) -> User:
        return self._set_blocked(wa_id, False)

    def add_tags(self, wa_id: str, tags: list[str]) -> User:
        tags = normalize_tags(tags)
        with self._unit_of_work() as repos:
            return repos.users.add_tags(wa_id, tags)

    def remove_tags(self, wa_id: str, tags: list[str]) -> User:
        tags = normalize_tags(tags)
        with self._unit_of_work() as repos:
            return repos.users.remove_tags(wa_id, tags)
