"""Small coercion helpers shared by the resource modules."""

from __future__ import annotations

import json
from typing import Any

DEFAULT_PAGE_SIZE = 100


def _coerce_list(value: Any) -> list[Any]:
    """Normalize scalar/list-like values to a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def _as_int(value: Any) -> int | None:
    """Convert values like numeric strings to integers."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _result(payload: Any) -> Any:
    """Unwrap the ``result`` envelope Superset puts around most bodies."""
    if isinstance(payload, dict) and "result" in payload:
        return payload["result"]
    return payload


def build_list_query(
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
    order_column: str | None = None,
    order_direction: str | None = None,
    filters: list[dict[str, Any]] | None = None,
    select_columns: list[str] | None = None,
) -> dict[str, str]:
    """Build the ``q`` query parameter the list endpoints expect.

    Filters are ``{"col", "opr", "value"}`` objects, passed through as-is.
    """
    query: dict[str, Any] = {"page": page, "page_size": page_size}
    if order_column:
        query["order_column"] = order_column
    if order_direction:
        if order_direction not in ("asc", "desc"):
            raise ValueError(
                f"order_direction must be 'asc' or 'desc', got {order_direction!r}."
            )
        query["order_direction"] = order_direction
    if filters:
        for idx, item in enumerate(filters):
            if not isinstance(item, dict) or not {"col", "opr"} <= item.keys():
                raise ValueError(
                    f"filters[{idx}] must be an object with 'col', 'opr' and 'value'."
                )
        query["filters"] = filters
    if select_columns:
        query["select_columns"] = select_columns
    return {"q": json.dumps(query)}


def _changed_fields(**fields: Any) -> dict[str, Any]:
    """Drop ``None`` values so only explicitly passed fields are sent."""
    return {k: v for k, v in fields.items() if v is not None}
