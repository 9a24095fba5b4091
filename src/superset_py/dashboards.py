"""Dashboard reads and edits, and the merged per-chart query context."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from superset_py._helpers import (
    DEFAULT_PAGE_SIZE,
    _as_int,
    _coerce_list,
    _result,
    build_list_query,
)
from superset_py.charts import get_chart
from superset_py.datasets import get_dataset
from superset_py.errors import SupersetError, wrap_errors
from superset_py.models import (
    AppliedFilter,
    ChartQueryContext,
    Dashboard,
    DashboardChart,
    Dataset,
    ListPage,
    decode_json_field,
    parse_record,
)

if TYPE_CHECKING:
    from superset_py.client import SupersetClient

_log = logging.getLogger("superset-mcp")

DASHBOARD_PATH = "api/v1/dashboard/"

_DATASOURCE_ID_RE = re.compile(r"^(\d+)__")


def _dashboard_path(id_or_slug: int | str) -> str:
    return f"{DASHBOARD_PATH}{id_or_slug}"


def list_dashboards(
    client: SupersetClient,
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
    order_column: str | None = None,
    order_direction: str | None = None,
    filters: list[dict[str, Any]] | None = None,
    select_columns: list[str] | None = None,
) -> ListPage[Dashboard]:
    params = build_list_query(
        page, page_size, order_column, order_direction, filters, select_columns,
    )
    with wrap_errors("list dashboards"):
        body = client.get(DASHBOARD_PATH, params=params)
    rows = body.get("result", []) if isinstance(body, dict) else []
    return ListPage[Dashboard](
        count=body.get("count", len(rows)) if isinstance(body, dict) else len(rows),
        result=[Dashboard.model_validate(row) for row in rows],
    )


def get_dashboard(client: SupersetClient, id_or_slug: int | str) -> Dashboard:
    with wrap_errors(f"get dashboard {id_or_slug}"):
        body = client.get(_dashboard_path(id_or_slug))
    return parse_record(Dashboard, _result(body), f"dashboard {id_or_slug}")


def _dataset_id_of(item: dict[str, Any]) -> int | None:
    """Dataset id from ``datasource_id`` or the ``"<id>__<type>"`` datasource string."""
    dataset_id = _as_int(item.get("datasource_id"))
    if dataset_id:
        return dataset_id
    form_data = item.get("form_data")
    for source in (form_data, item):
        if not isinstance(source, dict):
            continue
        datasource = source.get("datasource")
        if isinstance(datasource, str):
            match = _DATASOURCE_ID_RE.match(datasource)
            if match:
                return int(match.group(1))
    return None


def get_dashboard_charts(
    client: SupersetClient,
    id_or_slug: int | str,
    enrich: bool = True,
) -> list[DashboardChart]:
    """Charts on a dashboard, each tagged with its dataset id and name.

    Dataset lookups fail soft: a chart whose dataset cannot be fetched keeps
    ``dataset_name="N/A"`` and the rest of the list is still returned.
    """
    with wrap_errors(f"get charts of dashboard {id_or_slug}"):
        body = client.get(f"{_dashboard_path(id_or_slug)}/charts")
    rows = _result(body)
    charts: list[DashboardChart] = []
    names: dict[int, str] = {}
    for row in rows if isinstance(rows, list) else []:
        chart = DashboardChart.model_validate(row)
        chart.dataset_id = _dataset_id_of(row)
        if enrich and chart.dataset_id is not None:
            if chart.dataset_id not in names:
                try:
                    names[chart.dataset_id] = (
                        get_dataset(client, chart.dataset_id).table_name or "N/A"
                    )
                except SupersetError as exc:
                    _log.warning(
                        "dataset lookup failed chart=%s dataset=%s: %s",
                        chart.id, chart.dataset_id, exc,
                    )
                    names[chart.dataset_id] = "N/A"
            chart.dataset_name = names[chart.dataset_id]
        charts.append(chart)
    return charts


def get_dashboard_filters(client: SupersetClient, id_or_slug: int | str) -> dict[str, Any]:
    """Parsed ``json_metadata``.  Malformed metadata raises :class:`ParseError`."""
    dashboard = get_dashboard(client, id_or_slug)
    return decode_json_field(
        dashboard.json_metadata,
        f"dashboard {id_or_slug} json_metadata",
        on_error="raise",
    )


# ---------------------------------------------------------------------------
# Merged chart query context
# ---------------------------------------------------------------------------


def _adhoc_metric_summary(metric: dict[str, Any]) -> dict[str, Any]:
    column = metric.get("column")
    column_name = column.get("column_name") if isinstance(column, dict) else column
    if metric.get("sqlExpression"):
        expression = metric["sqlExpression"]
    elif metric.get("aggregate") and column_name:
        expression = f"{metric['aggregate']}({column_name})"
    else:
        expression = "Unknown"
    return {
        "metric_name": metric.get("label") or "Ad-hoc Metric",
        "expression": expression,
        "metric_type": metric.get("aggregate") or "CUSTOM",
        "description": "Ad-hoc metric defined in chart configuration",
        "verbose_name": metric.get("label"),
        "is_adhoc": True,
    }


def _used_metrics(params: dict[str, Any], dataset: Dataset) -> list[dict[str, Any]]:
    """Saved metrics the chart references (by name or id), then its ad-hoc ones."""
    chart_metrics = _coerce_list(params.get("metrics"))
    adhoc: list[dict[str, Any]] = []
    single = params.get("metric")
    if isinstance(single, dict):
        adhoc.append(_adhoc_metric_summary(single))
    for metric in chart_metrics:
        if isinstance(metric, dict) and metric.get("expressionType"):
            adhoc.append(_adhoc_metric_summary(metric))

    refs = {m for m in chart_metrics if isinstance(m, (str, int))}
    if isinstance(single, (str, int)):
        refs.add(single)
    saved = [
        m.to_dict() for m in dataset.metrics
        if m.metric_name in refs or (m.id is not None and m.id in refs)
    ]
    return saved + adhoc


def _filter_applies(native_filter: dict[str, Any], chart_id: int) -> bool:
    in_scope = native_filter.get("chartsInScope")
    if isinstance(in_scope, list) and chart_id in in_scope:
        return True
    scope = native_filter.get("scope")
    excluded = scope.get("excluded") if isinstance(scope, dict) else None
    return isinstance(excluded, list) and chart_id not in excluded


def applied_filters_for(
    metadata: dict[str, Any],
    chart_id: int,
    dataset_id: int | None,
) -> list[AppliedFilter]:
    """Native dashboard filters that reach *chart_id* on *dataset_id*."""
    applied: list[AppliedFilter] = []
    for native in _coerce_list(metadata.get("native_filter_configuration")):
        if not isinstance(native, dict) or not _filter_applies(native, chart_id):
            continue
        data_mask = native.get("defaultDataMask")
        value = data_mask.get("filterState") if isinstance(data_mask, dict) else None
        for target in _coerce_list(native.get("targets")):
            if not isinstance(target, dict) or target.get("datasetId") != dataset_id:
                continue
            column = target.get("column")
            applied.append(AppliedFilter(
                filter_id=native.get("id"),
                filter_type=native.get("filterType"),
                column=column.get("name") if isinstance(column, dict) else None,
                value=value,
                scope={
                    "charts": native.get("chartsInScope") or [],
                    "tabs": native.get("tabsInScope") or [],
                },
            ))
    return applied


def get_chart_query_context(
    client: SupersetClient,
    dashboard_id: int | str,
    chart_id: int,
) -> ChartQueryContext:
    """Reconstruct what *chart_id* queries when shown on *dashboard_id*.

    Merges, in order: the dashboard's filter metadata (malformed metadata is
    fatal), the chart's params (malformed params fall back to ``{}``), and
    the dataset's saved metrics and calculated columns (a failed dataset
    lookup is logged and leaves those lists empty).
    """
    operation = f"get query context of chart {chart_id} on dashboard {dashboard_id}"
    with wrap_errors(operation):
        dashboard = get_dashboard(client, dashboard_id)
        on_dashboard = get_dashboard_charts(client, dashboard_id, enrich=False)
        target = next((c for c in on_dashboard if c.id == chart_id), None)
        if target is None:
            raise ValueError(f"Chart {chart_id} not found in dashboard {dashboard_id}")
        chart = get_chart(client, chart_id)

    metadata = decode_json_field(
        dashboard.json_metadata,
        f"dashboard {dashboard_id} json_metadata",
        on_error="raise",
    )
    params = decode_json_field(
        chart.params, f"chart {chart_id} params", on_error="empty",
    )

    dataset_id = chart.datasource_id or target.dataset_id
    if not dataset_id and isinstance(params.get("datasource"), str):
        match = _DATASOURCE_ID_RE.match(params["datasource"])
        if match:
            dataset_id = int(match.group(1))

    dataset_name = (target.model_extra or {}).get("datasource_name")
    used_metrics: list[dict[str, Any]] = []
    calculated_columns: list[dict[str, Any]] = []
    if dataset_id:
        try:
            dataset = get_dataset(client, dataset_id)
        except SupersetError as exc:
            _log.warning("dataset %s details unavailable: %s", dataset_id, exc)
        else:
            dataset_name = dataset.table_name or dataset_name
            used_metrics = _used_metrics(params, dataset)
            calculated_columns = [c.to_dict() for c in dataset.calculated_columns()]

    applied = applied_filters_for(metadata, chart_id, dataset_id)
    resolved_dashboard_id = _as_int(dashboard_id) or dashboard.id or dashboard_id
    return ChartQueryContext(
        dashboard_id=resolved_dashboard_id,
        chart_id=chart_id,
        chart_name=target.slice_name or chart.slice_name,
        dataset_id=dataset_id,
        dataset_name=dataset_name or "Unknown",
        chart_params=params,
        used_metrics=used_metrics,
        calculated_columns=calculated_columns,
        applied_filters=applied,
        final_query_context={
            **params,
            "dashboard_id": resolved_dashboard_id,
            "applied_dashboard_filters": [f.model_dump() for f in applied],
        },
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def create_dashboard(
    client: SupersetClient,
    dashboard_title: str,
    published: bool = False,
    slug: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"dashboard_title": dashboard_title, "published": published}
    if slug:
        payload["slug"] = slug
    with wrap_errors(f"create dashboard {dashboard_title!r}"):
        body = client.post(DASHBOARD_PATH, json=payload)
    result = dict(_result(body) or {})
    result["id"] = body.get("id") if isinstance(body, dict) else None
    return result


def update_dashboard(client: SupersetClient, dashboard_id: int, **fields: Any) -> dict[str, Any]:
    if not fields:
        raise ValueError("Provide at least one field to update.")
    with wrap_errors(f"update dashboard {dashboard_id}"):
        body = client.put(_dashboard_path(dashboard_id), json=fields)
    result = dict(_result(body) or {})
    result.setdefault("id", dashboard_id)
    return result


def delete_dashboard(client: SupersetClient, dashboard_id: int) -> dict[str, Any]:
    with wrap_errors(f"delete dashboard {dashboard_id}"):
        body = client.delete(_dashboard_path(dashboard_id))
    return body if isinstance(body, dict) else {}
