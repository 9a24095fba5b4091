"""Safety guardrails: audit journal, pre-mutation snapshots, dependency checks."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, TYPE_CHECKING

from pydantic import BaseModel, Field

from superset_py import charts, dashboards, datasets
from superset_py.errors import SupersetError

if TYPE_CHECKING:
    from superset_py.client import SupersetClient

_log = logging.getLogger("superset-mcp")

# ---------------------------------------------------------------------------
# Audit directory (env-configurable)
# ---------------------------------------------------------------------------

AUDIT_DIR = Path(
    os.environ.get("SUPERSET_MCP_AUDIT_DIR", "~/.superset-mcp/audit/")
).expanduser()

ResourceType = Literal["dashboard", "chart", "dataset", "metric", "column"]

# ---------------------------------------------------------------------------
# MutationEntry model
# ---------------------------------------------------------------------------


class MutationEntry(BaseModel):
    """Single entry in the mutation audit journal."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tool_name: str
    resource_type: ResourceType
    resource_id: int | None = None
    parent_id: int | None = None  # owning dataset for metrics/columns
    action: Literal["create", "update", "delete"]
    fields_changed: list[str] = Field(default_factory=list)
    before_snapshot: dict[str, Any] | None = None
    after_summary: dict[str, Any] | None = None
    dry_run: bool = False


# ---------------------------------------------------------------------------
# Audit journal
# ---------------------------------------------------------------------------


def record_mutation(entry: MutationEntry) -> None:
    """Append a JSONL line to the audit journal. Fire-and-forget."""
    try:
        AUDIT_DIR.mkdir(parents=True, exist_ok=True)
        journal = AUDIT_DIR / "mutations.jsonl"
        line = entry.model_dump_json() + "\n"
        with journal.open("a") as f:
            f.write(line)
    except OSError as exc:
        _log.warning("audit journal write failed: %s", exc)


# ---------------------------------------------------------------------------
# Pre-mutation snapshots
# ---------------------------------------------------------------------------


def _fetch(client: SupersetClient, resource_type: str, resource_id: int) -> dict[str, Any]:
    if resource_type == "dataset":
        return datasets.get_dataset(client, resource_id).to_dict()
    if resource_type == "chart":
        return charts.get_chart(client, resource_id).to_dict()
    if resource_type == "dashboard":
        return dashboards.get_dashboard(client, resource_id).to_dict()
    raise ValueError(f"Cannot snapshot resource type {resource_type!r}.")


def capture_before(
    client: SupersetClient,
    resource_type: str,
    resource_id: int,
) -> dict[str, Any]:
    """Fetch the current state of a resource before mutation.

    Also writes a snapshot file for manual recovery.
    Returns the full dict; on failure returns ``{"_snapshot_error": ...}``.
    """
    try:
        data = _fetch(client, resource_type, resource_id)
    except SupersetError as exc:
        _log.warning("capture_before failed for %s/%d: %s", resource_type, resource_id, exc)
        return {"_snapshot_error": str(exc)}

    try:
        snap_dir = AUDIT_DIR / "snapshots"
        snap_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        snap_file = snap_dir / f"{resource_type}_{resource_id}_{ts}.json"
        snap_file.write_text(json.dumps(data, indent=2, default=str) + "\n")
    except OSError as exc:
        _log.warning("snapshot file write failed: %s", exc)

    return data


# ---------------------------------------------------------------------------
# Dependency checks
# ---------------------------------------------------------------------------


def check_dataset_dependents(
    client: SupersetClient,
    dataset_id: int,
) -> dict[str, Any]:
    """Find charts that depend on a given dataset.

    Returns advisory info and never blocks the mutation by itself.
    """
    try:
        page = charts.list_charts(
            client,
            page_size=100,
            filters=[{"col": "datasource_id", "opr": "eq", "value": dataset_id}],
            select_columns=["id", "slice_name", "datasource_id"],
        )
        affected = [
            {"id": ch.id, "name": ch.slice_name}
            for ch in page.result
            if ch.datasource_id in (None, dataset_id)
        ]
        return {
            "dataset_id": dataset_id,
            "affected_charts": affected,
            "chart_count": len(affected),
            "warning": (
                f"{len(affected)} chart(s) use this dataset and will be affected."
                if affected
                else "No charts depend on this dataset."
            ),
        }
    except SupersetError as exc:
        _log.warning("dependency check failed for dataset %d: %s", dataset_id, exc)
        return {
            "dataset_id": dataset_id,
            "affected_charts": [],
            "chart_count": 0,
            "warning": f"Could not check dependents: {exc}",
        }


# ---------------------------------------------------------------------------
# Params validation
# ---------------------------------------------------------------------------

_FORBIDDEN_PARAM_KEYS = frozenset({
    "datasource_id",
    "datasource_type",
    "database_id",
})


def _metric_column_name(metric: dict[str, Any]) -> str | None:
    column = metric.get("column")
    if isinstance(column, str):
        return column
    if isinstance(column, dict):
        name = column.get("column_name") or column.get("name")
        if isinstance(name, str):
            return name
    return None


def _validate_metric_object(metric: dict[str, Any], index: int) -> str | None:
    """Validate an ad-hoc metric and return the column it references, if any."""
    expression_type = metric.get("expressionType")
    if expression_type == "SIMPLE":
        if not metric.get("aggregate"):
            raise ValueError(
                f"metrics[{index}] uses SIMPLE expressionType but has no aggregate."
            )
        col_name = _metric_column_name(metric)
        if not col_name:
            raise ValueError(
                f"metrics[{index}] uses SIMPLE expressionType but has no valid column."
            )
        return col_name

    if expression_type == "SQL":
        sql_expr = metric.get("sqlExpression")
        if not isinstance(sql_expr, str) or not sql_expr.strip():
            raise ValueError(
                f"metrics[{index}] uses SQL expressionType but sqlExpression is missing."
            )
        return None

    if expression_type is None:
        if metric.get("sqlExpression") or metric.get("label") or metric.get("metric_name"):
            return _metric_column_name(metric)
        raise ValueError(
            f"metrics[{index}] is an object but has no metric structure. "
            "Expected a saved metric name or a SIMPLE/SQL metric object."
        )

    raise ValueError(
        f"metrics[{index}] has unsupported expressionType={expression_type!r}."
    )


def _referenced_columns(params: dict[str, Any]) -> set[str]:
    refs: set[str] = set()
    for key in ("groupby", "columns"):
        value = params.get(key)
        if isinstance(value, list):
            refs.update(v for v in value if isinstance(v, str) and v)
    for key in ("filters", "adhoc_filters"):
        value = params.get(key)
        if not isinstance(value, list):
            continue
        for item in value:
            if not isinstance(item, dict):
                continue
            for field in ("col", "subject"):
                if isinstance(item.get(field), str) and item[field]:
                    refs.add(item[field])
    return refs


def dataset_reference_names(
    client: SupersetClient,
    dataset_id: int | None,
) -> tuple[set[str], set[str]]:
    """Column and saved-metric names of a dataset, for params validation.

    Returns two empty sets when the dataset cannot be fetched, which turns
    the unknown-reference warnings off.
    """
    if not dataset_id:
        return set(), set()
    try:
        dataset = datasets.get_dataset(client, dataset_id)
    except SupersetError as exc:
        _log.warning("dataset %s unavailable for params check: %s", dataset_id, exc)
        return set(), set()
    return (
        {c.column_name for c in dataset.columns},
        {m.metric_name for m in dataset.metrics},
    )


def validate_params_payload(
    params: dict[str, Any] | str,
    *,
    dataset_columns: set[str] | None = None,
    dataset_metrics: set[str] | None = None,
) -> tuple[dict[str, Any], list[str]]:
    """Parse + validate chart params and return advisory warnings.

    Raises ``ValueError`` on malformed JSON, datasource-rebinding keys, or
    invalid metric objects.  Unknown column or metric references only
    produce warnings.
    """
    if isinstance(params, str):
        try:
            params = json.loads(params)
        except json.JSONDecodeError as exc:
            raise ValueError(
                f"params is not valid JSON: {exc}. "
                "Pass a JSON object, e.g. '{\"metrics\": [\"count\"]}'"
            ) from exc
    if not isinstance(params, dict):
        raise ValueError(
            f"params must be a JSON object, got {type(params).__name__}."
        )

    forbidden = _FORBIDDEN_PARAM_KEYS & set(params)
    if forbidden:
        raise ValueError(
            f"params must not contain datasource-rebinding keys: {sorted(forbidden)}."
        )

    warnings: list[str] = []
    dataset_columns = dataset_columns or set()
    dataset_metrics = dataset_metrics or set()

    referenced = _referenced_columns(params)
    metrics = params.get("metrics")
    if metrics is not None:
        if not isinstance(metrics, list):
            raise ValueError("params.metrics must be a list.")
        for idx, metric in enumerate(metrics):
            if isinstance(metric, dict):
                ref = _validate_metric_object(metric, idx)
                if ref:
                    referenced.add(ref)
            elif isinstance(metric, str):
                if dataset_metrics and metric not in dataset_metrics | dataset_columns:
                    warnings.append(
                        f"metrics[{idx}] references unknown metric {metric!r}."
                    )
            else:
                raise ValueError(f"metrics[{idx}] must be a string or metric object.")

    if dataset_columns:
        missing = sorted(c for c in referenced if c not in dataset_columns)
        if missing:
            warnings.append(f"params reference unknown dataset columns: {missing}.")

    return params, warnings
