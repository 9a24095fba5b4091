"""Chart CRUD, params editing, and query-context filters."""

from __future__ import annotations

import copy
import json
import logging
from typing import TYPE_CHECKING, Any

from superset_py._helpers import (
    DEFAULT_PAGE_SIZE,
    _as_int,
    _coerce_list,
    _result,
    build_list_query,
)
from superset_py.errors import wrap_errors
from superset_py.models import (
    Chart,
    ListPage,
    decode_json_field,
    encode_json_field,
    parse_record,
)

if TYPE_CHECKING:
    from superset_py.client import SupersetClient

_log = logging.getLogger("superset-mcp")

CHART_PATH = "api/v1/chart/"

DEFAULT_ROW_LIMIT = 10000

FILTER_OPERATORS = frozenset({
    "==", "!=", ">", "<", ">=", "<=",
    "LIKE", "NOT LIKE", "ILIKE",
    "IS NULL", "IS NOT NULL",
    "IN", "NOT IN",
    "IS TRUE", "IS FALSE",
    "TEMPORAL_RANGE",
})

_FILTER_KEYS = ("col", "op", "val", "grain", "isExtra")


def _chart_path(chart_id: int) -> str:
    return f"{CHART_PATH}{chart_id}"


# ---------------------------------------------------------------------------
# Query-context synthesis
# ---------------------------------------------------------------------------


def _datasource_from_params(params: dict[str, Any]) -> tuple[int | None, str | None]:
    """Parse ``params.datasource`` in either ``"<id>__<type>"`` or object form."""
    datasource = params.get("datasource")
    if isinstance(datasource, dict):
        return _as_int(datasource.get("id")), str(datasource.get("type") or "table")
    if isinstance(datasource, str) and "__" in datasource:
        raw_id, datasource_type = datasource.split("__", 1)
        return _as_int(raw_id), datasource_type or "table"
    return None, None


def _unique(values: list[Any]) -> list[Any]:
    """Order-preserving dedupe that tolerates unhashable (adhoc) entries."""
    seen: set[str] = set()
    out: list[Any] = []
    for value in values:
        key = json.dumps(value, sort_keys=True, default=str)
        if key not in seen:
            seen.add(key)
            out.append(value)
    return out


def _metric_label(metric: Any) -> str | None:
    if isinstance(metric, str):
        return metric
    if isinstance(metric, dict):
        label = metric.get("label")
        if label:
            return str(label)
        if metric.get("expressionType") == "SQL" and metric.get("sqlExpression"):
            return str(metric["sqlExpression"])
    return None


def _normalize_orderby(orderby: Any, metrics: list[Any]) -> list[list[Any]]:
    """Normalize ``orderby`` into ``[[label, ascending], ...]``."""
    normalized: list[list[Any]] = []
    for item in _coerce_list(orderby):
        if isinstance(item, (list, tuple)) and item:
            key = _metric_label(item[0]) or item[0]
            normalized.append([key, bool(item[1]) if len(item) > 1 else False])
        elif isinstance(item, str):
            normalized.append([item, False])
    if not normalized and metrics:
        label = _metric_label(metrics[0])
        if label:
            normalized = [[label, False]]
    return normalized


def _split_adhoc_filters(
    adhoc_filters: list[Any],
) -> tuple[list[dict[str, Any]], list[str], list[str]]:
    """Turn adhoc filters into simple filters plus WHERE/HAVING clauses."""
    simple: list[dict[str, Any]] = []
    where: list[str] = []
    having: list[str] = []
    for item in adhoc_filters:
        if not isinstance(item, dict):
            continue
        clause = str(item.get("clause") or "WHERE").upper()
        if item.get("expressionType") == "SQL":
            sql = item.get("sqlExpression")
            if sql:
                (having if clause == "HAVING" else where).append(f"({sql})")
            continue
        subject = item.get("subject")
        operator = item.get("operator")
        if subject and operator:
            flt: dict[str, Any] = {"col": subject, "op": operator}
            if "comparator" in item:
                flt["val"] = item["comparator"]
            simple.append(flt)
    return simple, where, having


def build_query_context(
    params: dict[str, Any],
    datasource_id: int | None = None,
    datasource_type: str | None = None,
) -> dict[str, Any]:
    """Synthesize a chart-data query context from chart ``params``.

    Used when a chart has no stored ``query_context``.  The first (only)
    query takes ``columns`` from ``groupby`` + ``columns``, ``metrics`` from
    ``metrics`` (or the single ``metric``), and ``row_limit`` from params.
    """
    params = params or {}
    if datasource_id is None:
        datasource_id, parsed_type = _datasource_from_params(params)
        datasource_type = datasource_type or parsed_type

    metrics = _coerce_list(params.get("metrics"))
    if not metrics and params.get("metric") not in (None, "", []):
        metrics = _coerce_list(params["metric"])

    columns = _unique(
        _coerce_list(params.get("groupby")) + _coerce_list(params.get("columns"))
    )

    adhoc_simple, where, having = _split_adhoc_filters(
        _coerce_list(params.get("adhoc_filters"))
    )
    filters = [
        f for f in _coerce_list(params.get("filters")) if isinstance(f, dict)
    ] + adhoc_simple
    if params.get("where"):
        where.insert(0, f"({params['where']})")
    if params.get("having"):
        having.insert(0, f"({params['having']})")

    row_limit = _as_int(params.get("row_limit"))
    query: dict[str, Any] = {
        "columns": columns,
        "metrics": metrics,
        "filters": filters,
        "orderby": _normalize_orderby(params.get("orderby"), metrics),
        "is_timeseries": bool(
            params.get("granularity_sqla") or params.get("time_column")
        ),
        "extras": {
            "where": " AND ".join(where),
            "having": " AND ".join(having),
        },
        "annotation_layers": [],
        "row_limit": row_limit if row_limit is not None else DEFAULT_ROW_LIMIT,
        "time_range": params.get("time_range", "No filter"),
        "url_params": params.get("url_params") or {},
    }
    if params.get("granularity_sqla"):
        query["granularity"] = params["granularity_sqla"]
    if params.get("time_grain_sqla"):
        query["extras"]["time_grain_sqla"] = params["time_grain_sqla"]

    return {
        "datasource": {"id": datasource_id, "type": datasource_type or "table"},
        "force": False,
        "queries": [query],
        "form_data": params,
        "result_format": "json",
        "result_type": "full",
    }


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def validate_chart_filters(filters: Any) -> list[dict[str, Any]]:
    """Check each filter has ``col`` and a supported ``op``; drop unknown keys."""
    if not isinstance(filters, list):
        raise ValueError("filters must be a list of {col, op, val} objects.")
    cleaned: list[dict[str, Any]] = []
    for idx, flt in enumerate(filters):
        if not isinstance(flt, dict):
            raise ValueError(f"filters[{idx}] must be an object.")
        if not flt.get("col") or not flt.get("op"):
            raise ValueError(f"filters[{idx}] must have 'col' and 'op'.")
        op = str(flt["op"]).strip().upper()
        if op not in FILTER_OPERATORS:
            raise ValueError(
                f"filters[{idx}] has unsupported op {flt['op']!r}. "
                f"Supported: {sorted(FILTER_OPERATORS)}"
            )
        out = {k: flt[k] for k in _FILTER_KEYS if k in flt}
        out["op"] = op
        cleaned.append(out)
    return cleaned


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


def list_charts(
    client: SupersetClient,
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
    order_column: str | None = None,
    order_direction: str | None = None,
    filters: list[dict[str, Any]] | None = None,
    select_columns: list[str] | None = None,
) -> ListPage[Chart]:
    params = build_list_query(
        page, page_size, order_column, order_direction, filters, select_columns,
    )
    with wrap_errors("list charts"):
        body = client.get(CHART_PATH, params=params)
    rows = body.get("result", []) if isinstance(body, dict) else []
    return ListPage[Chart](
        count=body.get("count", len(rows)) if isinstance(body, dict) else len(rows),
        result=[Chart.model_validate(row) for row in rows],
    )


def get_chart(client: SupersetClient, chart_id: int) -> Chart:
    with wrap_errors(f"get chart {chart_id}"):
        body = client.get(_chart_path(chart_id))
    return parse_record(Chart, _result(body), f"chart {chart_id}")


def get_chart_params(client: SupersetClient, chart_id: int) -> dict[str, Any]:
    """Decoded ``params``.  Malformed params raise :class:`ParseError`."""
    chart = get_chart(client, chart_id)
    return decode_json_field(chart.params, f"chart {chart_id} params", on_error="raise")


def update_chart(client: SupersetClient, chart_id: int, **fields: Any) -> dict[str, Any]:
    """PUT chart fields.  Dict-valued ``params``/``query_context`` are serialized."""
    if not fields:
        raise ValueError("Provide at least one field to update.")
    payload = dict(fields)
    for key in ("params", "query_context"):
        if isinstance(payload.get(key), dict):
            payload[key] = encode_json_field(payload[key])
    with wrap_errors(f"update chart {chart_id}"):
        body = client.put(_chart_path(chart_id), json=payload)
    result = dict(_result(body) or {})
    result.setdefault("id", chart_id)
    return result


def update_chart_params(
    client: SupersetClient,
    chart_id: int,
    params: dict[str, Any],
) -> dict[str, Any]:
    if not isinstance(params, dict):
        raise ValueError("params must be a JSON object.")
    return update_chart(client, chart_id, params=encode_json_field(params))


def get_chart_query_context(client: SupersetClient, chart_id: int) -> dict[str, Any]:
    """Stored query context, or one synthesized from params when absent.

    An unparseable stored context is logged and replaced by the synthesized
    one rather than failing.
    """
    chart = get_chart(client, chart_id)
    return _query_context_for(chart)


def _query_context_for(chart: Chart) -> dict[str, Any]:
    stored = decode_json_field(
        chart.query_context, f"chart {chart.id} query_context", on_error="empty",
    )
    if isinstance(stored.get("queries"), list) and stored["queries"]:
        return stored
    params = decode_json_field(
        chart.params, f"chart {chart.id} params", on_error="empty",
    )
    return build_query_context(params, chart.datasource_id, chart.datasource_type)


def get_chart_filters(client: SupersetClient, chart_id: int) -> list[dict[str, Any]]:
    context = get_chart_query_context(client, chart_id)
    first = context["queries"][0] if context.get("queries") else {}
    filters = first.get("filters") if isinstance(first, dict) else None
    return filters if isinstance(filters, list) else []


def set_chart_filters(
    client: SupersetClient,
    chart_id: int,
    filters: list[dict[str, Any]],
) -> dict[str, Any]:
    """Replace the data filters on every query of the chart's query context.

    Read-modify-write: if the final PUT fails the chart is unchanged.
    """
    cleaned = validate_chart_filters(filters)
    chart = get_chart(client, chart_id)
    context = copy.deepcopy(_query_context_for(chart))

    for query in context.get("queries", []):
        if isinstance(query, dict):
            query["filters"] = copy.deepcopy(cleaned)
    if isinstance(context.get("form_data"), dict):
        context["form_data"]["filters"] = copy.deepcopy(cleaned)

    update_chart(client, chart_id, query_context=context)
    _log.info("set_chart_filters chart=%s count=%d", chart_id, len(cleaned))
    return {"chart_id": chart_id, "filters": cleaned, "query_context": context}


def create_chart(
    client: SupersetClient,
    dataset_id: int,
    slice_name: str,
    viz_type: str,
    params: dict[str, Any] | None = None,
    dashboards: list[int] | None = None,
    description: str | None = None,
) -> dict[str, Any]:
    """Create a chart on a dataset with baseline params merged under *params*."""
    merged: dict[str, Any] = {
        "viz_type": viz_type,
        "datasource": f"{dataset_id}__table",
        "row_limit": DEFAULT_ROW_LIMIT,
        "adhoc_filters": [],
    }
    merged.update(params or {})

    payload: dict[str, Any] = {
        "slice_name": slice_name,
        "viz_type": viz_type,
        "datasource_id": dataset_id,
        "datasource_type": "table",
        "params": encode_json_field(merged),
    }
    if dashboards:
        payload["dashboards"] = dashboards
    if description:
        payload["description"] = description

    with wrap_errors(f"create chart {slice_name!r}"):
        body = client.post(CHART_PATH, json=payload)
    result = dict(_result(body) or {})
    result["id"] = body.get("id") if isinstance(body, dict) else None
    return result


def delete_chart(client: SupersetClient, chart_id: int) -> dict[str, Any]:
    with wrap_errors(f"delete chart {chart_id}"):
        body = client.delete(_chart_path(chart_id))
    return body if isinstance(body, dict) else {}
