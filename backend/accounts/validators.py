"""Helpers for list-valued settings read from the environment."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def parse_string_list(value: str | list[str]) -> list[str]:
    """Parse a list of strings given as a list, a JSON array, or comma-separated text.

    Blank entries are dropped. Raises ValueError for malformed JSON or when
    nothing is left.
    """
    if isinstance(value, list):
        items = value
    elif value.strip().startswith("["):
        try:
            items = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON array: {e}") from e
        if not isinstance(items, list) or not all(isinstance(item, str) for item in items):
            raise ValueError("JSON value must be an array of strings")
    else:
        items = value.split(",")

    result = [item.strip() for item in items if item.strip()]
    if not result:
        raise ValueError("String list value must not be empty")
    return result


def normalize_base_url(value: str) -> str:
    """Strip whitespace and trailing slashes so paths can be appended with a single '/'."""
    stripped = value.strip().rstrip("/")
    if not stripped.startswith(("http://", "https://")):
        raise ValueError(f"URL must start with http:// or https://, got {value!r}")
    return stripped


class StringListEnvSettingsSource(EnvSettingsSource):
    """Env source that hands raw strings for list fields to their validators.

    pydantic-settings JSON-decodes list-typed env values before validation,
    which rejects the comma-separated form. Fields named in
    ``raw_string_fields`` skip that step.
    """

    raw_string_fields = frozenset({"cors_origins"})

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in self.raw_string_fields and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
