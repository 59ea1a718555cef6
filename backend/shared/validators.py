"""Validators for relay settings and wire values."""

from __future__ import annotations

import ipaddress
import json
import re
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

_ADDRESS_PATTERN = re.compile(r"0x[0-9a-fA-F]{40}")

WILDCARD = "*"


def is_address(value: object) -> bool:
    """Check that a value is a 0x-prefixed, 20-byte hex address string."""
    return isinstance(value, str) and _ADDRESS_PATTERN.fullmatch(value) is not None


def _load_items(value: str) -> list[str]:
    if not value.startswith("["):
        return value.split(",")
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON array: {e}") from e
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        raise ValueError("JSON value must be an array of strings")
    return parsed


def parse_string_list(value: str | list[str], *, allow_empty: bool = False) -> list[str]:
    """Read a list setting given as a list, a JSON array or comma-separated text.

    Items are stripped, blank items dropped and repeats removed, keeping the
    first occurrence. An empty result raises ValueError unless allow_empty.
    """
    items = value if isinstance(value, list) else _load_items(value.strip())
    result = list(dict.fromkeys(item.strip() for item in items if item.strip()))
    if not result and not allow_empty:
        raise ValueError("String list value must not be empty")
    return result


def parse_proxy_list(value: str | list[str]) -> list[str]:
    """Read trusted proxies: IP addresses, CIDR ranges, or "*" for any peer."""
    entries = parse_string_list(value, allow_empty=True)
    for entry in entries:
        if entry == WILDCARD:
            continue
        try:
            ipaddress.ip_network(entry, strict=False)
        except ValueError as e:
            raise ValueError(f"Trusted proxy {entry!r} is not an IP address or network") from e
    return entries


class StringListEnvSettingsSource(EnvSettingsSource):
    """Env source that hands `list[str]` fields to their validators as raw text.

    pydantic-settings would otherwise JSON-decode them first, which rejects
    the comma-separated form.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field.annotation == list[str] and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
