"""
Response decoding for the resolution service.

The service has answered with several shapes over time. Each field is looked up
through a fixed precedence list of paths; the first non-empty string wins:

    variant:        variant > meta.variant > variant_id
    label:          meta.text > meta.label
    correlation_id: correlation_id > corr_id > correlationId

Labels are trimmed and must be non-empty. Variant ids may arrive as numbers
and are stringified.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .types import VariantResponse

VARIANT_PATHS: tuple[tuple[str, ...], ...] = (("variant",), ("meta", "variant"), ("variant_id",))
LABEL_PATHS: tuple[tuple[str, ...], ...] = (("meta", "text"), ("meta", "label"))
CORRELATION_PATHS: tuple[tuple[str, ...], ...] = (
    ("correlation_id",),
    ("corr_id",),
    ("correlationId",),
)


class MalformedResponse(ValueError):
    pass


def _dig(data: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    cur: Any = data
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _first_id(data: Mapping[str, Any], paths: tuple[tuple[str, ...], ...]) -> str | None:
    for path in paths:
        value = _dig(data, path)
        if isinstance(value, bool):
            continue
        if isinstance(value, str) and value:
            return value
        if isinstance(value, int | float):
            return str(value)
    return None


def _first_text(data: Mapping[str, Any], paths: tuple[tuple[str, ...], ...]) -> str | None:
    for path in paths:
        value = _dig(data, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def decode_response(data: Any) -> VariantResponse:
    if not isinstance(data, Mapping):
        raise MalformedResponse(f"expected a JSON object, got {type(data).__name__}")

    return VariantResponse(
        variant=_first_id(data, VARIANT_PATHS),
        label=_first_text(data, LABEL_PATHS),
        correlation_id=_first_id(data, CORRELATION_PATHS),
        raw=dict(data),
    )
