"""MCP server exposing Apache Superset operations as tools.

Architecture
------------
MCP client ──STDIO──▶ server.py (FastMCP) ──▶ resource modules ──▶ SupersetClient ──▶ REST API

Design:
  • One client handle: ``_get_client()`` builds the only SupersetClient
    lazily; resource functions receive it explicitly.
  • Progressive disclosure: list tools accept ``response_mode``
    (compact / standard / full) so the LLM controls token budget.
  • Structured errors: ToolError payloads carry ``error_type`` and
    ``hints[]`` so the LLM gets actionable recovery steps.
  • Structured logging: JSON lines on *stderr* (stdout is the STDIO
    transport).  Logs tool name, duration and status.
  • Audit journal: every mutation (and dry run) is appended to
    ``$SUPERSET_MCP_AUDIT_DIR/mutations.jsonl``; updates snapshot the
    previous state first.
"""

from __future__ import annotations

import functools
import json
import logging
import os
import sys
import time
from collections.abc import Callable
from typing import Any, Literal

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import ValidationError

from superset_py import charts, columns, dashboards, databases, datasets, metrics
from superset_py.client import SupersetClient, _env_int, connect
from superset_py.errors import (
    AuthenticationError,
    CsrfFetchError,
    ParseError,
    ResourceError,
    SqlExecutionError,
    TransportError,
    UpstreamHttpError,
)
from superset_py._safety import (
    MutationEntry,
    ResourceType,
    capture_before,
    check_dataset_dependents,
    dataset_reference_names,
    record_mutation,
    validate_params_payload,
)

# ---------------------------------------------------------------------------
# Configuration (all overridable via SUPERSET_MCP_* env vars)
# ---------------------------------------------------------------------------

SQL_ROW_LIMIT: int = _env_int("SUPERSET_MCP_SQL_ROW_LIMIT", 1000)
SQL_SAMPLE_ROWS: int = _env_int("SUPERSET_MCP_SQL_SAMPLE_ROWS", 5)
TRUNCATION_THRESHOLD: int = _env_int("SUPERSET_MCP_TRUNCATION_THRESHOLD", 50)
TRUNCATION_TAIL: int = _env_int("SUPERSET_MCP_TRUNCATION_TAIL", 5)

# ---------------------------------------------------------------------------
# Logging  (stderr: stdout is the STDIO transport)
# ---------------------------------------------------------------------------

_log = logging.getLogger("superset-mcp")
_handler = logging.StreamHandler(sys.stderr)
_handler.setFormatter(
    logging.Formatter(
        '{"ts":"%(asctime)s","level":"%(levelname)s","msg":"%(message)s"}'
    )
)
_log.addHandler(_handler)
_log.setLevel(os.environ.get("SUPERSET_MCP_LOG_LEVEL", "INFO").upper())

# ---------------------------------------------------------------------------
# Progressive-disclosure field sets
# ---------------------------------------------------------------------------

ResponseMode = Literal["compact", "standard", "full"]

_COMPACT: dict[str, list[str]] = {
    "dashboard": ["id", "dashboard_title", "published"],
    "dashboard_chart": ["id", "slice_name", "dataset_name"],
    "chart": ["id", "slice_name", "viz_type"],
    "dataset": ["id", "table_name", "schema"],
    "database": ["id", "database_name", "backend"],
    "metric": ["id", "metric_name"],
    "column": ["id", "column_name", "type"],
}

_STANDARD: dict[str, list[str]] = {
    "dashboard": [
        "id", "dashboard_title", "slug", "status", "published",
        "changed_on_delta_humanized", "url",
    ],
    "dashboard_chart": [
        "id", "slice_name", "viz_type", "dataset_id", "dataset_name",
    ],
    "chart": [
        "id", "slice_name", "viz_type", "datasource_id",
        "datasource_name_text", "changed_on_delta_humanized",
    ],
    "dataset": [
        "id", "table_name", "database", "schema", "kind", "sql",
        "changed_on_delta_humanized",
    ],
    "database": [
        "id", "database_name", "backend", "expose_in_sqllab",
        "allow_dml",
    ],
    "metric": [
        "id", "metric_name", "expression", "metric_type", "verbose_name",
        "d3format",
    ],
    "column": [
        "id", "column_name", "type", "expression", "is_dttm",
        "filterable", "groupby",
    ],
}

# ---------------------------------------------------------------------------
# Server + lazy state
# ---------------------------------------------------------------------------

mcp = FastMCP("superset-mcp")

_client: SupersetClient | None = None


def _get_client() -> SupersetClient:
    global _client
    if _client is None:
        _client = connect()
        _log.info("configured base_url=%s", _client.base_url)
    return _client


# ---------------------------------------------------------------------------
# Internal helpers: progressive disclosure
# ---------------------------------------------------------------------------


def _records(items: list[Any]) -> list[dict[str, Any]]:
    return [i.to_dict() if hasattr(i, "to_dict") else i for i in items]


def _pick(records: list[dict], fields: list[str]) -> list[dict]:
    """Extract *fields* from each record, skipping missing keys."""
    return [{k: r[k] for k in fields if k in r} for r in records]


def _format_list(
    records: list[dict],
    resource: str,
    mode: ResponseMode,
    total: int | None = None,
) -> str:
    """Apply progressive disclosure to a list of API records."""
    if mode == "compact":
        data = _pick(records, _COMPACT.get(resource, []))
    elif mode == "standard":
        data = _pick(records, _STANDARD.get(resource, []))
    else:
        data = records

    out: dict[str, Any] = {
        "count": len(records),
        "response_mode": mode,
        "data": data,
    }
    if total is not None and total != len(records):
        out["total_count"] = total
        out["hint_paging"] = "More results exist. Increase page to see them."
    if mode != "full":
        out["hint"] = "Set response_mode='full' to see all fields."
    return json.dumps(out, indent=2, default=str)


def _format_sql(
    records: list[dict],
    columns: list[str],
    mode: ResponseMode,
) -> str:
    """Apply progressive disclosure to SQL query results."""
    total = len(records)
    out: dict[str, Any] = {
        "rowcount": total,
        "columns": columns,
        "response_mode": mode,
    }

    if mode == "compact":
        out["hint"] = (
            "Schema only. Use response_mode='standard' for sample rows "
            "or 'full' for all rows."
        )
    elif mode == "standard":
        sample = records[:SQL_SAMPLE_ROWS]
        out["sample_rows"] = sample
        if total > SQL_SAMPLE_ROWS:
            out["truncated"] = True
            out["hint"] = (
                f"Showing {len(sample)}/{total} rows. "
                "Use response_mode='full' for all rows."
            )
    else:  # full
        if total > TRUNCATION_THRESHOLD:
            head_n = TRUNCATION_THRESHOLD - TRUNCATION_TAIL
            head = records[:head_n]
            tail = records[-TRUNCATION_TAIL:]
            omitted = total - head_n - TRUNCATION_TAIL
            out["rows"] = (
                head
                + [{"__truncated__": f"…{omitted} rows omitted…"}]
                + tail
            )
            out["truncated"] = True
        else:
            out["rows"] = records
            out["truncated"] = False

    return json.dumps(out, indent=2, default=str)


def _dump(data: Any) -> str:
    if hasattr(data, "model_dump"):
        data = data.model_dump(by_alias=True)
    return json.dumps(data, indent=2, default=str)


# ---------------------------------------------------------------------------
# Error handling (structured, with hints)
# ---------------------------------------------------------------------------


def _tool_error(error: str, error_type: str, hints: list[str]) -> ToolError:
    return ToolError(
        json.dumps({"error": error, "error_type": error_type, "hints": hints})
    )


def _exception_to_tool_error(tool_name: str, exc: Exception) -> ToolError:
    """Map exception to structured ToolError with hints."""
    cause = exc.cause if isinstance(exc, ResourceError) else exc

    if isinstance(exc, KeyError):
        _log.warning("tool=%s error=missing_env key=%s", tool_name, exc)
        return _tool_error(
            f"Missing environment variable: {exc}",
            "configuration",
            [
                "Set SUPERSET_USERNAME and SUPERSET_PASSWORD, "
                "or SUPERSET_ACCESS_TOKEN.",
                "Set SUPERSET_BASE_URL if Superset is not on localhost:8088.",
            ],
        )

    if isinstance(cause, (AuthenticationError, CsrfFetchError)) or (
        isinstance(cause, UpstreamHttpError) and cause.status_code == 401
    ):
        _log.warning("tool=%s error=authentication msg=%s", tool_name, exc)
        return _tool_error(
            str(exc),
            "authentication",
            [
                "Verify SUPERSET_USERNAME / SUPERSET_PASSWORD (and "
                "SUPERSET_AUTH_PROVIDER) or SUPERSET_ACCESS_TOKEN.",
                "Tokens are not refreshed automatically; restart the "
                "server to log in again after expiry.",
            ],
        )

    if isinstance(cause, TransportError):
        _log.error("tool=%s error=transport msg=%s", tool_name, exc)
        return _tool_error(
            str(exc),
            "connection",
            [
                "Check that Superset is running and SUPERSET_BASE_URL is correct.",
                "Raise SUPERSET_MCP_TIMEOUT for slow instances.",
            ],
        )

    if isinstance(exc, SqlExecutionError):
        _log.warning("tool=%s error=sql", tool_name)
        return _tool_error(
            str(exc),
            "sql_error",
            [
                "Fix the query and retry; the report above lists the "
                "database's own error messages.",
                "Use list_databases to confirm database_id.",
            ],
        )

    # Malformed data coming back from Superset, not a bad argument.
    if isinstance(cause, (ParseError, ValidationError)):
        _log.warning("tool=%s error=parse msg=%s", tool_name, exc)
        return _tool_error(
            str(exc),
            "parse",
            [
                "Superset returned a value that could not be read; inspect "
                "the resource with the matching get_* tool.",
                "Fix the stored JSON (params, query_context, json_metadata) "
                "in Superset if it is corrupt.",
            ],
        )

    if isinstance(exc, ValueError):
        _log.warning("tool=%s error=validation msg=%s", tool_name, exc)
        return _tool_error(
            str(exc),
            "validation",
            ["Check parameter values and try again."],
        )

    hints = [
        "This may be transient; retry once.",
        "If the error mentions a resource ID, verify it "
        "exists with the corresponding list_* tool.",
    ]
    if isinstance(cause, UpstreamHttpError) and cause.status_code == 404:
        hints = ["The resource does not exist. Use the list_* tools to find valid IDs."]
    _log.error("tool=%s error=api msg=%s", tool_name, exc)
    return _tool_error(f"Superset API error: {exc}", "api_error", hints)


def _handle_errors(fn):
    """Decorator: catch exceptions → structured ToolError with hints."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        t0 = time.monotonic()
        try:
            result = fn(*args, **kwargs)
            _log.info(
                "tool=%s status=ok duration_ms=%.0f",
                fn.__name__, (time.monotonic() - t0) * 1000,
            )
            return result
        except ToolError:
            raise
        except Exception as exc:
            raise _exception_to_tool_error(fn.__name__, exc) from exc

    return wrapper


# ---------------------------------------------------------------------------
# Mutation helper: consolidates audit/dry-run/response boilerplate
# ---------------------------------------------------------------------------


def _do_mutation(
    *,
    tool_name: str,
    resource_type: ResourceType,
    action: Literal["create", "update", "delete"],
    fields_changed: list[str],
    dry_run: bool,
    execute: Callable[[], Any],
    resource_id: int | None = None,
    parent_id: int | None = None,
    before: dict[str, Any] | None = None,
    preview_extras: dict[str, Any] | None = None,
    result_extras: dict[str, Any] | None = None,
) -> str:
    """Handle audit/dry-run/response pattern for all mutation tools.

    Dry-run path: builds preview JSON, records audit, returns.
    Execute path: calls ``execute()``, builds response, records audit, returns.
    """
    if dry_run:
        preview: dict[str, Any] = {
            "dry_run": True,
            "action": tool_name,
            "fields_to_change": fields_changed,
        }
        if resource_id is not None:
            preview[f"{resource_type}_id"] = resource_id
        if parent_id is not None:
            preview["dataset_id"] = parent_id
        if before is not None:
            preview["current_state"] = before
        if preview_extras:
            preview.update(preview_extras)

        record_mutation(MutationEntry(
            tool_name=tool_name,
            resource_type=resource_type,
            resource_id=resource_id,
            parent_id=parent_id,
            action=action,
            fields_changed=fields_changed,
            before_snapshot=before,
            dry_run=True,
        ))
        return _dump(preview)

    result = execute()
    if hasattr(result, "to_dict"):
        result = result.to_dict()

    if action == "create":
        rid = result.get("id") if isinstance(result, dict) else None
        after_summary: dict[str, Any] = {"id": rid}
        resource_id = rid
        response: dict[str, Any] = result if isinstance(result, dict) else {"result": result}
    elif action == "delete":
        after_summary = {}
        response = {"status": "deleted", f"{resource_type}_id": resource_id}
        if parent_id is not None:
            response["dataset_id"] = parent_id
    else:  # update
        after_summary = {"id": resource_id, "fields_updated": fields_changed}
        response = result if isinstance(result, dict) else {"result": result}

    if result_extras:
        response.update(result_extras)

    record_mutation(MutationEntry(
        tool_name=tool_name,
        resource_type=resource_type,
        resource_id=resource_id,
        parent_id=parent_id,
        action=action,
        fields_changed=fields_changed,
        before_snapshot=before,
        after_summary=after_summary,
    ))

    return _dump(response)


def _require_fields(kwargs: dict[str, Any], names: str) -> None:
    if not kwargs:
        raise ValueError(f"Provide at least one field to update ({names}).")


# ===================================================================
# Tools: Datasets
# ===================================================================


@mcp.tool()
@_handle_errors
def list_datasets(
    page: int = 0,
    page_size: int = 100,
    order_column: str | None = None,
    order_direction: Literal["asc", "desc"] | None = None,
    filters: list[dict[str, Any]] | None = None,
    select_columns: list[str] | None = None,
    response_mode: ResponseMode = "standard",
) -> str:
    """List datasets (tables and virtual SQL datasets).

    Datasets are the data sources for charts.  Use list_databases to
    find connection IDs needed for creating new datasets.

    Args:
        page: Zero-based page number
        page_size: Rows per page (default 100)
        order_column: Column to sort by, e.g. "changed_on_delta_humanized"
        order_direction: 'asc' or 'desc'
        filters: List of {"col", "opr", "value"} objects,
                 e.g. [{"col": "table_name", "opr": "ct", "value": "sales"}]
        select_columns: Only return these fields, e.g. ["id", "table_name"]
        response_mode: 'compact', 'standard', or 'full'.  Default: standard.
    """
    client = _get_client()
    result = datasets.list_datasets(
        client, page, page_size, order_column, order_direction, filters,
        select_columns,
    )
    _log.info("list_datasets count=%d mode=%s", len(result.result), response_mode)
    return _format_list(_records(result.result), "dataset", response_mode, result.count)


@mcp.tool()
@_handle_errors
def get_dataset(dataset_id: int) -> str:
    """Get full detail for one dataset, including columns, metrics and SQL.

    Args:
        dataset_id: Numeric dataset ID
    """
    client = _get_client()
    return _dump(datasets.get_dataset(client, dataset_id).to_dict())


@mcp.tool()
@_handle_errors
def create_dataset(
    database_id: int,
    table_name: str,
    schema: str | None = None,
    sql: str | None = None,
    description: str | None = None,
    dry_run: bool = False,
) -> str:
    """Create a dataset from a physical table, or a virtual dataset from SQL.

    Omit sql to register an existing table; pass sql to create a virtual
    dataset.  Use list_databases to find database_id.

    Args:
        database_id: Database connection ID
        table_name: Table name (physical) or display name (virtual)
        schema: Optional schema name
        sql: Optional SQL defining a virtual dataset
        description: Optional description (applied after creation)
        dry_run: If True, validate inputs and return a preview without
                 making any changes (default: False)
    """
    if not table_name or not table_name.strip():
        raise ValueError("table_name must not be empty.")
    fields = ["database_id", "table_name"] + [
        name for name, value in (
            ("schema", schema), ("sql", sql), ("description", description),
        ) if value is not None
    ]
    client = _get_client()
    return _do_mutation(
        tool_name="create_dataset",
        resource_type="dataset",
        action="create",
        fields_changed=fields,
        dry_run=dry_run,
        execute=lambda: datasets.create_dataset(
            client, database_id, table_name,
            schema=schema, sql=sql, description=description,
        ),
        preview_extras={"values": {
            "database_id": database_id, "table_name": table_name,
            "schema": schema, "sql": sql, "description": description,
        }},
    )


@mcp.tool()
@_handle_errors
def update_dataset(
    dataset_id: int,
    sql: str | None = None,
    table_name: str | None = None,
    description: str | None = None,
    schema: str | None = None,
    override_columns: bool = False,
    dry_run: bool = False,
) -> str:
    """Update an existing dataset's SQL, name, schema or description.

    After updating the SQL, charts built on this dataset reflect the new
    data on their next refresh.

    Args:
        dataset_id: ID of the dataset to update
        sql: New SQL query (replaces existing)
        table_name: New name
        description: New description
        schema: New schema
        override_columns: If True, rebuild column metadata from the new
                          SQL (recommended when changing SQL)
        dry_run: If True, capture current state and check dependent
                 charts without making any changes (default: False)
    """
    kwargs: dict[str, Any] = {}
    if sql is not None:
        kwargs["sql"] = sql
    if table_name is not None:
        kwargs["table_name"] = table_name
    if description is not None:
        kwargs["description"] = description
    if schema is not None:
        kwargs["schema"] = schema
    _require_fields(kwargs, "sql, table_name, description, or schema")

    client = _get_client()
    before = capture_before(client, "dataset", dataset_id)

    dependency_impact: dict[str, Any] | None = None
    if sql is not None or override_columns:
        dependency_impact = check_dataset_dependents(client, dataset_id)

    return _do_mutation(
        tool_name="update_dataset",
        resource_type="dataset",
        action="update",
        fields_changed=list(kwargs.keys()),
        dry_run=dry_run,
        execute=lambda: datasets.update_dataset(
            client, dataset_id, override_columns=override_columns, **kwargs
        ),
        resource_id=dataset_id,
        before=before,
        preview_extras={"dependency_impact": dependency_impact} if dependency_impact else None,
        result_extras={"_dependency_impact": dependency_impact} if dependency_impact else None,
    )


@mcp.tool()
@_handle_errors
def refresh_dataset_schema(dataset_id: int) -> str:
    """Re-read column metadata from the underlying table or SQL.

    Use after the source table changed or after editing a virtual
    dataset's SQL without override_columns.

    Args:
        dataset_id: ID of the dataset to refresh
    """
    client = _get_client()
    return _do_mutation(
        tool_name="refresh_dataset_schema",
        resource_type="dataset",
        action="update",
        fields_changed=["columns"],
        dry_run=False,
        execute=lambda: datasets.refresh_dataset_schema(client, dataset_id),
        resource_id=dataset_id,
    )


@mcp.tool()
@_handle_errors
def find_replace_dataset_sql(
    dataset_id: int,
    find: str,
    replace: str,
    dry_run: bool = False,
) -> str:
    """Replace every literal occurrence of text in a virtual dataset's SQL.

    Matching is plain text (not regex) and case-sensitive.  Jinja template
    blocks ({{ }}, {% %}, {# #}) are never modified.  Nothing is written
    when there is no match.

    Args:
        dataset_id: ID of a virtual (SQL) dataset
        find: Text to search for
        replace: Replacement text
        dry_run: If True, return the new SQL without saving it
    """
    client = _get_client()
    before = None if dry_run else capture_before(client, "dataset", dataset_id)
    result = datasets.find_replace_dataset_sql(
        client, dataset_id, find, replace, dry_run=dry_run,
    )
    if result["replacements"]:
        record_mutation(MutationEntry(
            tool_name="find_replace_dataset_sql",
            resource_type="dataset",
            resource_id=dataset_id,
            action="update",
            fields_changed=["sql"],
            before_snapshot=before,
            after_summary={"replacements": result["replacements"]},
            dry_run=dry_run,
        ))
    return _dump(result)


# ===================================================================
# Tools: Metrics
# ===================================================================


@mcp.tool()
@_handle_errors
def get_dataset_metrics(
    dataset_id: int,
    response_mode: ResponseMode = "standard",
) -> str:
    """List the saved metrics defined on a dataset.

    Args:
        dataset_id: Numeric dataset ID
        response_mode: 'compact', 'standard', or 'full'.  Default: standard.
    """
    client = _get_client()
    found = metrics.get_dataset_metrics(client, dataset_id)
    return _format_list(_records(found), "metric", response_mode)


@mcp.tool()
@_handle_errors
def create_dataset_metric(
    dataset_id: int,
    metric_name: str,
    expression: str,
    metric_type: str | None = None,
    description: str | None = None,
    verbose_name: str | None = None,
    d3format: str | None = None,
    warning_text: str | None = None,
    dry_run: bool = False,
) -> str:
    """Add a saved metric to a dataset.

    Args:
        dataset_id: Dataset to add the metric to
        metric_name: Unique metric name, e.g. "total_revenue"
        expression: SQL aggregate, e.g. "SUM(revenue)"
        metric_type: Optional type label
        description: Optional description
        verbose_name: Optional display name
        d3format: Optional number format, e.g. ",.2f"
        warning_text: Optional warning shown next to the metric
        dry_run: If True, return a preview without making any changes
    """
    fields = {
        "metric_name": metric_name, "expression": expression,
        "metric_type": metric_type, "description": description,
        "verbose_name": verbose_name, "d3format": d3format,
        "warning_text": warning_text,
    }
    client = _get_client()
    return _do_mutation(
        tool_name="create_dataset_metric",
        resource_type="metric",
        action="create",
        fields_changed=[k for k, v in fields.items() if v is not None],
        dry_run=dry_run,
        execute=lambda: metrics.create_dataset_metric(client, dataset_id, **fields),
        parent_id=dataset_id,
        preview_extras={"values": fields},
    )


@mcp.tool()
@_handle_errors
def update_dataset_metric(
    dataset_id: int,
    metric_id: int,
    metric_name: str | None = None,
    expression: str | None = None,
    metric_type: str | None = None,
    description: str | None = None,
    verbose_name: str | None = None,
    d3format: str | None = None,
    warning_text: str | None = None,
    dry_run: bool = False,
) -> str:
    """Edit one saved metric.  Only the fields you pass are changed.

    Use get_dataset_metrics to find metric_id.

    Args:
        dataset_id: Dataset that owns the metric
        metric_id: Metric ID
        metric_name: New name
        expression: New SQL expression
        metric_type: New type label
        description: New description
        verbose_name: New display name
        d3format: New number format
        warning_text: New warning text
        dry_run: If True, return a preview without making any changes
    """
    kwargs = {
        k: v for k, v in {
            "metric_name": metric_name, "expression": expression,
            "metric_type": metric_type, "description": description,
            "verbose_name": verbose_name, "d3format": d3format,
            "warning_text": warning_text,
        }.items() if v is not None
    }
    _require_fields(kwargs, "metric_name, expression, ...")

    client = _get_client()
    return _do_mutation(
        tool_name="update_dataset_metric",
        resource_type="metric",
        action="update",
        fields_changed=list(kwargs.keys()),
        dry_run=dry_run,
        execute=lambda: metrics.update_dataset_metric(
            client, dataset_id, metric_id, **kwargs
        ),
        resource_id=metric_id,
        parent_id=dataset_id,
        preview_extras={"values": kwargs},
    )


@mcp.tool()
@_handle_errors
def update_dataset_metrics(
    dataset_id: int,
    updates: list[dict[str, Any]],
    dry_run: bool = False,
) -> str:
    """Create and update several saved metrics in one write.

    Entries with an "id" patch that metric; entries without one are added
    and need metric_name and expression.  If any id does not exist the
    whole batch is rejected before anything is written.

    Args:
        dataset_id: Dataset that owns the metrics
        updates: e.g. [{"id": 3, "d3format": ",.0f"},
                       {"metric_name": "orders", "expression": "COUNT(*)"}]
        dry_run: If True, return a preview without making any changes
    """
    fields = sorted({k for u in updates if isinstance(u, dict) for k in u} - {"id"})
    client = _get_client()
    return _do_mutation(
        tool_name="update_dataset_metrics",
        resource_type="metric",
        action="update",
        fields_changed=fields,
        dry_run=dry_run,
        execute=lambda: {
            "dataset_id": dataset_id,
            "metrics": _records(
                metrics.update_dataset_metrics(client, dataset_id, updates)
            ),
        },
        parent_id=dataset_id,
        preview_extras={"updates": updates},
    )


# ===================================================================
# Tools: Columns
# ===================================================================


@mcp.tool()
@_handle_errors
def get_dataset_columns(
    dataset_id: int,
    calculated_only: bool = False,
    response_mode: ResponseMode = "standard",
) -> str:
    """List a dataset's columns.  Calculated columns carry an expression.

    Args:
        dataset_id: Numeric dataset ID
        calculated_only: If True, only return calculated columns
        response_mode: 'compact', 'standard', or 'full'.  Default: standard.
    """
    client = _get_client()
    found = columns.get_dataset_columns(client, dataset_id)
    if calculated_only:
        found = [c for c in found if c.is_calculated]
    return _format_list(_records(found), "column", response_mode)


@mcp.tool()
@_handle_errors
def create_calculated_column(
    dataset_id: int,
    column_name: str,
    expression: str,
    type: str | None = None,
    description: str | None = None,
    verbose_name: str | None = None,
    filterable: bool = True,
    groupby: bool = True,
    is_dttm: bool = False,
    python_date_format: str | None = None,
    dry_run: bool = False,
) -> str:
    """Add a calculated column (a SQL expression) to a dataset.

    Args:
        dataset_id: Dataset to add the column to
        column_name: Unique column name
        expression: SQL expression, e.g. "price * quantity"
        type: Optional SQL type (default "UNKNOWN")
        description: Optional description
        verbose_name: Optional display name
        filterable: Usable in filters (default True)
        groupby: Usable as a dimension (default True)
        is_dttm: Treat as a temporal column (default False)
        python_date_format: Optional date format for temporal columns
        dry_run: If True, return a preview without making any changes
    """
    fields = {
        "column_name": column_name, "expression": expression, "type": type,
        "description": description, "verbose_name": verbose_name,
        "filterable": filterable, "groupby": groupby, "is_dttm": is_dttm,
        "python_date_format": python_date_format,
    }
    client = _get_client()
    return _do_mutation(
        tool_name="create_calculated_column",
        resource_type="column",
        action="create",
        fields_changed=[k for k, v in fields.items() if v is not None],
        dry_run=dry_run,
        execute=lambda: columns.create_calculated_column(client, dataset_id, **fields),
        parent_id=dataset_id,
        preview_extras={"values": fields},
    )


@mcp.tool()
@_handle_errors
def update_calculated_column(
    dataset_id: int,
    column_id: int,
    column_name: str | None = None,
    expression: str | None = None,
    type: str | None = None,
    description: str | None = None,
    verbose_name: str | None = None,
    filterable: bool | None = None,
    groupby: bool | None = None,
    is_dttm: bool | None = None,
    python_date_format: str | None = None,
    dry_run: bool = False,
) -> str:
    """Edit a calculated column.  Only the fields you pass are changed.

    Use get_dataset_columns to find column_id.

    Args:
        dataset_id: Dataset that owns the column
        column_id: Column ID
        column_name: New name
        expression: New SQL expression
        type: New SQL type
        description: New description
        verbose_name: New display name
        filterable: New filterable flag
        groupby: New groupby flag
        is_dttm: New temporal flag
        python_date_format: New date format
        dry_run: If True, return a preview without making any changes
    """
    kwargs = {
        k: v for k, v in {
            "column_name": column_name, "expression": expression,
            "type": type, "description": description,
            "verbose_name": verbose_name, "filterable": filterable,
            "groupby": groupby, "is_dttm": is_dttm,
            "python_date_format": python_date_format,
        }.items() if v is not None
    }
    _require_fields(kwargs, "column_name, expression, ...")

    client = _get_client()
    return _do_mutation(
        tool_name="update_calculated_column",
        resource_type="column",
        action="update",
        fields_changed=list(kwargs.keys()),
        dry_run=dry_run,
        execute=lambda: columns.update_calculated_column(
            client, dataset_id, column_id, **kwargs
        ),
        resource_id=column_id,
        parent_id=dataset_id,
        preview_extras={"values": kwargs},
    )


# ===================================================================
# Tools: Charts
# ===================================================================


@mcp.tool()
@_handle_errors
def list_charts(
    page: int = 0,
    page_size: int = 100,
    order_column: str | None = None,
    order_direction: Literal["asc", "desc"] | None = None,
    filters: list[dict[str, Any]] | None = None,
    select_columns: list[str] | None = None,
    response_mode: ResponseMode = "standard",
) -> str:
    """List charts.

    Use this to find chart IDs and see which viz types are in use.

    Args:
        page: Zero-based page number
        page_size: Rows per page (default 100)
        order_column: Column to sort by
        order_direction: 'asc' or 'desc'
        filters: List of {"col", "opr", "value"} objects
        select_columns: Only return these fields, e.g. ["id", "slice_name"]
        response_mode: 'compact', 'standard', or 'full'.  Default: standard.
    """
    client = _get_client()
    result = charts.list_charts(
        client, page, page_size, order_column, order_direction, filters,
        select_columns,
    )
    _log.info("list_charts count=%d mode=%s", len(result.result), response_mode)
    return _format_list(_records(result.result), "chart", response_mode, result.count)


@mcp.tool()
@_handle_errors
def get_chart(chart_id: int) -> str:
    """Get full detail for one chart (params and query_context as stored).

    Args:
        chart_id: Numeric chart ID
    """
    client = _get_client()
    return _dump(charts.get_chart(client, chart_id).to_dict())


@mcp.tool()
@_handle_errors
def get_chart_params(chart_id: int) -> str:
    """Get a chart's visualization params as a JSON object.

    Args:
        chart_id: Numeric chart ID
    """
    client = _get_client()
    return _dump(charts.get_chart_params(client, chart_id))


@mcp.tool()
@_handle_errors
def update_chart_params(
    chart_id: int,
    params: dict[str, Any],
    dry_run: bool = False,
) -> str:
    """Replace a chart's visualization params.

    Call get_chart_params first and send back the edited object; keys you
    omit are removed.  Datasource-rebinding keys are rejected.

    Args:
        chart_id: ID of the chart to update
        params: Complete params object (metrics, groupby, adhoc_filters, ...)
        dry_run: If True, validate and return a preview without saving
    """
    client = _get_client()
    before = capture_before(client, "chart", chart_id)
    known_columns, known_metrics = dataset_reference_names(
        client, before.get("datasource_id"),
    )
    parsed, warnings = validate_params_payload(
        params, dataset_columns=known_columns, dataset_metrics=known_metrics,
    )
    return _do_mutation(
        tool_name="update_chart_params",
        resource_type="chart",
        action="update",
        fields_changed=["params"],
        dry_run=dry_run,
        execute=lambda: charts.update_chart_params(client, chart_id, parsed),
        resource_id=chart_id,
        before=before,
        preview_extras={"params": parsed, "warnings": warnings},
        result_extras={"warnings": warnings} if warnings else None,
    )


@mcp.tool()
@_handle_errors
def get_chart_query_context(chart_id: int) -> str:
    """Get the query context a chart runs (stored, or built from params).

    Args:
        chart_id: Numeric chart ID
    """
    client = _get_client()
    return _dump(charts.get_chart_query_context(client, chart_id))


@mcp.tool()
@_handle_errors
def get_chart_filters(chart_id: int) -> str:
    """Get the data filters a chart's query applies.

    Each filter is {"col", "op", "val"}; "isExtra" marks filters added by
    dashboard filter components.

    Args:
        chart_id: Numeric chart ID
    """
    client = _get_client()
    found = charts.get_chart_filters(client, chart_id)
    return _dump({
        "chart_id": chart_id,
        "count": len(found),
        "filters": found,
        "supported_operators": sorted(charts.FILTER_OPERATORS),
    })


@mcp.tool()
@_handle_errors
def set_chart_filters(
    chart_id: int,
    filters: list[dict[str, Any]],
    dry_run: bool = False,
) -> str:
    """Replace the data filters in a chart's query context.

    Args:
        chart_id: ID of the chart to update
        filters: List of {"col", "op", "val"} objects; op is one of
                 ==, !=, >, <, >=, <=, LIKE, NOT LIKE, ILIKE, IS NULL,
                 IS NOT NULL, IN, NOT IN, IS TRUE, IS FALSE, TEMPORAL_RANGE.
                 Optional "grain" for temporal filters.
        dry_run: If True, validate and return a preview without saving
    """
    cleaned = charts.validate_chart_filters(filters)
    client = _get_client()
    before = capture_before(client, "chart", chart_id)
    return _do_mutation(
        tool_name="set_chart_filters",
        resource_type="chart",
        action="update",
        fields_changed=["query_context"],
        dry_run=dry_run,
        execute=lambda: charts.set_chart_filters(client, chart_id, cleaned),
        resource_id=chart_id,
        before=before,
        preview_extras={"filters": cleaned},
    )


@mcp.tool()
@_handle_errors
def create_chart(
    dataset_id: int,
    slice_name: str,
    viz_type: str,
    params: dict[str, Any] | None = None,
    dashboards: list[int] | None = None,
    description: str | None = None,
    dry_run: bool = False,
) -> str:
    """Create a chart from an existing dataset.

    Args:
        dataset_id: ID of the dataset to visualize
        slice_name: Chart title
        viz_type: Visualization type (e.g. "table", "pie",
                  "echarts_timeseries_bar", "big_number_total")
        params: Extra visualization params merged over the defaults
        dashboards: Dashboard IDs to attach this chart to
        description: Optional description
        dry_run: If True, validate inputs and return a preview without
                 making any changes (default: False)
    """
    client = _get_client()
    warnings: list[str] = []
    if params is not None:
        known_columns, known_metrics = dataset_reference_names(client, dataset_id)
        params, warnings = validate_params_payload(
            params, dataset_columns=known_columns, dataset_metrics=known_metrics,
        )

    return _do_mutation(
        tool_name="create_chart",
        resource_type="chart",
        action="create",
        fields_changed=["dataset_id", "slice_name", "viz_type"]
        + [n for n, v in (("params", params), ("dashboards", dashboards)) if v],
        dry_run=dry_run,
        execute=lambda: charts.create_chart(
            client, dataset_id, slice_name, viz_type,
            params=params, dashboards=dashboards, description=description,
        ),
        preview_extras={"values": {
            "dataset_id": dataset_id, "slice_name": slice_name,
            "viz_type": viz_type, "params": params, "dashboards": dashboards,
        }, "warnings": warnings},
        result_extras={"warnings": warnings} if warnings else None,
    )


@mcp.tool()
@_handle_errors
def update_chart(
    chart_id: int,
    slice_name: str | None = None,
    viz_type: str | None = None,
    description: str | None = None,
    dashboards: list[int] | None = None,
    dry_run: bool = False,
) -> str:
    """Update a chart's title, viz type, description or dashboards.

    Use update_chart_params for visualization params.

    Args:
        chart_id: ID of the chart to update
        slice_name: New chart title
        viz_type: New visualization type
        description: New description
        dashboards: Reassign chart to these dashboard IDs
        dry_run: If True, capture current state and return a preview
                 without making any changes (default: False)
    """
    kwargs: dict[str, Any] = {}
    if slice_name is not None:
        kwargs["slice_name"] = slice_name
    if viz_type is not None:
        kwargs["viz_type"] = viz_type
    if description is not None:
        kwargs["description"] = description
    if dashboards is not None:
        kwargs["dashboards"] = dashboards
    _require_fields(kwargs, "slice_name, viz_type, description, or dashboards")

    client = _get_client()
    before = capture_before(client, "chart", chart_id)
    return _do_mutation(
        tool_name="update_chart",
        resource_type="chart",
        action="update",
        fields_changed=list(kwargs.keys()),
        dry_run=dry_run,
        execute=lambda: charts.update_chart(client, chart_id, **kwargs),
        resource_id=chart_id,
        before=before,
    )


# ===================================================================
# Tools: Dashboards
# ===================================================================


@mcp.tool()
@_handle_errors
def list_dashboards(
    page: int = 0,
    page_size: int = 100,
    order_column: str | None = None,
    order_direction: Literal["asc", "desc"] | None = None,
    filters: list[dict[str, Any]] | None = None,
    select_columns: list[str] | None = None,
    response_mode: ResponseMode = "standard",
) -> str:
    """List dashboards.

    Start here to discover dashboard IDs, then use get_dashboard_charts
    for the charts on one of them.

    Args:
        page: Zero-based page number
        page_size: Rows per page (default 100)
        order_column: Column to sort by
        order_direction: 'asc' or 'desc'
        filters: List of {"col", "opr", "value"} objects
        select_columns: Only return these fields, e.g. ["id", "dashboard_title"]
        response_mode: 'compact' (id+title), 'standard' (key fields),
                       or 'full' (raw API response).  Default: standard.
    """
    client = _get_client()
    result = dashboards.list_dashboards(
        client, page, page_size, order_column, order_direction, filters,
        select_columns,
    )
    _log.info("list_dashboards count=%d mode=%s", len(result.result), response_mode)
    return _format_list(
        _records(result.result), "dashboard", response_mode, result.count,
    )


@mcp.tool()
@_handle_errors
def get_dashboard(id_or_slug: int | str) -> str:
    """Get full detail for a single dashboard.

    Args:
        id_or_slug: Numeric dashboard ID or its URL slug
    """
    client = _get_client()
    return _dump(dashboards.get_dashboard(client, id_or_slug).to_dict())


@mcp.tool()
@_handle_errors
def get_dashboard_charts(
    id_or_slug: int | str,
    response_mode: ResponseMode = "standard",
) -> str:
    """List the charts on a dashboard with the dataset each one uses.

    Args:
        id_or_slug: Numeric dashboard ID or its URL slug
        response_mode: 'compact', 'standard', or 'full'.  Default: standard.
    """
    client = _get_client()
    found = dashboards.get_dashboard_charts(client, id_or_slug)
    return _format_list(_records(found), "dashboard_chart", response_mode)


@mcp.tool()
@_handle_errors
def get_dashboard_filters(id_or_slug: int | str) -> str:
    """Get a dashboard's filter configuration (its parsed json_metadata).

    Native filters are under "native_filter_configuration".

    Args:
        id_or_slug: Numeric dashboard ID or its URL slug
    """
    client = _get_client()
    return _dump(dashboards.get_dashboard_filters(client, id_or_slug))


@mcp.tool()
@_handle_errors
def get_dashboard_chart_query_context(dashboard_id: int | str, chart_id: int) -> str:
    """Explain what a chart queries when shown on a dashboard.

    Combines the chart's params, the dashboard's native filters that
    reach the chart, and the dataset metrics and calculated columns the
    chart relies on.

    Args:
        dashboard_id: Numeric dashboard ID or slug
        chart_id: Chart ID (must be on that dashboard)
    """
    client = _get_client()
    return _dump(dashboards.get_chart_query_context(client, dashboard_id, chart_id))


@mcp.tool()
@_handle_errors
def create_dashboard(
    dashboard_title: str,
    published: bool = False,
    slug: str | None = None,
    dry_run: bool = False,
) -> str:
    """Create a new, empty dashboard.

    After creating, use create_chart with the dashboards parameter to
    add charts.

    Args:
        dashboard_title: Display title for the dashboard
        published: Whether the dashboard is published (default: False)
        slug: Optional URL slug
        dry_run: If True, validate inputs and return a preview without
                 making any changes (default: False)
    """
    client = _get_client()
    return _do_mutation(
        tool_name="create_dashboard",
        resource_type="dashboard",
        action="create",
        fields_changed=["dashboard_title", "published"] + (["slug"] if slug else []),
        dry_run=dry_run,
        execute=lambda: dashboards.create_dashboard(
            client, dashboard_title, published=published, slug=slug,
        ),
        preview_extras={"values": {
            "dashboard_title": dashboard_title, "published": published, "slug": slug,
        }},
    )


@mcp.tool()
@_handle_errors
def update_dashboard(
    dashboard_id: int,
    dashboard_title: str | None = None,
    published: bool | None = None,
    slug: str | None = None,
    dry_run: bool = False,
) -> str:
    """Update an existing dashboard's title, slug or published status.

    Args:
        dashboard_id: ID of the dashboard to update
        dashboard_title: New dashboard title
        published: Set to True to publish, False to unpublish
        slug: New URL slug
        dry_run: If True, capture current state and return a preview
                 without making any changes (default: False)
    """
    kwargs: dict[str, Any] = {}
    if dashboard_title is not None:
        kwargs["dashboard_title"] = dashboard_title
    if published is not None:
        kwargs["published"] = published
    if slug is not None:
        kwargs["slug"] = slug
    _require_fields(kwargs, "dashboard_title, published, or slug")

    client = _get_client()
    before = capture_before(client, "dashboard", dashboard_id)
    return _do_mutation(
        tool_name="update_dashboard",
        resource_type="dashboard",
        action="update",
        fields_changed=list(kwargs.keys()),
        dry_run=dry_run,
        execute=lambda: dashboards.update_dashboard(client, dashboard_id, **kwargs),
        resource_id=dashboard_id,
        before=before,
    )


# ===================================================================
# Tools: Databases / SQL
# ===================================================================


@mcp.tool()
@_handle_errors
def list_databases(response_mode: ResponseMode = "standard") -> str:
    """List database connections.

    Call this BEFORE execute_sql or create_dataset to find a valid
    database_id.

    Args:
        response_mode: 'compact', 'standard', or 'full'.  Default: standard.
    """
    client = _get_client()
    result = databases.list_databases(client)
    _log.info("list_databases count=%d mode=%s", len(result.result), response_mode)
    return _format_list(
        _records(result.result), "database", response_mode, result.count,
    )


@mcp.tool()
@_handle_errors
def execute_sql(
    database_id: int,
    sql: str,
    schema: str | None = None,
    limit: int = SQL_ROW_LIMIT,
    response_mode: ResponseMode = "standard",
) -> str:
    """Execute SQL synchronously through SQL Lab.

    Args:
        database_id: Database connection ID (see list_databases)
        sql: SQL to run
        schema: Optional schema name
        limit: Max rows to return (default 1000)
        response_mode: 'compact' (columns only), 'standard' (sample rows),
                       or 'full' (all rows with smart truncation).
                       Default: standard.
    """
    client = _get_client()
    result = databases.execute_sql(client, database_id, sql, schema=schema, limit=limit)
    df = result.to_frame()
    records = df.to_dict("records")
    cols = [str(c) for c in df.columns.tolist()]
    _log.info(
        "execute_sql rows=%d cols=%d mode=%s", len(records), len(cols), response_mode,
    )
    return _format_sql(records, cols, response_mode)


# ===================================================================
# Resources
# ===================================================================


@mcp.resource("superset://datasets")
def datasets_overview() -> str:
    """Overview of the first datasets (id, name, database, schema)."""
    client = _get_client()
    page = datasets.list_datasets(client, page_size=50)
    lines = [f"Datasets ({len(page.result)} of {page.count}):", ""]
    for ds in page.result:
        lines.append(
            f"- [{ds.id}] {ds.table_name}  database={ds.database_id or 'N/A'}"
            f"  schema={ds.schema_name or 'N/A'}"
        )
    return "\n".join(lines)


@mcp.resource("superset://databases")
def databases_overview() -> str:
    """Overview of database connections (id, name, backend)."""
    client = _get_client()
    page = databases.list_databases(client)
    lines = [f"Databases ({len(page.result)}):", ""]
    for db in page.result:
        lines.append(f"- [{db.id}] {db.database_name}  backend={db.backend or 'N/A'}")
    return "\n".join(lines)


# ===================================================================
# Tools: Delete operations (hidden with SUPERSET_MCP_DISABLE_DELETE)
# ===================================================================

_DELETE_ENABLED = os.environ.get("SUPERSET_MCP_DISABLE_DELETE", "").lower() not in (
    "true", "1", "yes",
)

if _DELETE_ENABLED:

    @mcp.tool()
    @_handle_errors
    def delete_dataset(
        dataset_id: int,
        force: bool = False,
        dry_run: bool = False,
    ) -> str:
        """Delete a dataset.

        If charts depend on this dataset, the delete is blocked unless
        force=True.  The previous state is saved to the audit snapshots.

        Args:
            dataset_id: ID of the dataset to delete
            force: If True, delete even if charts depend on this dataset
            dry_run: If True, return a preview without deleting
        """
        client = _get_client()
        deps = check_dataset_dependents(client, dataset_id)
        if deps["chart_count"] > 0 and not force:
            raise ValueError(
                f"Cannot delete dataset {dataset_id}: "
                f"{deps['chart_count']} chart(s) depend on it: "
                f"{[c['name'] for c in deps['affected_charts']]}. "
                "Use force=True to delete anyway."
            )
        before = capture_before(client, "dataset", dataset_id)
        return _do_mutation(
            tool_name="delete_dataset",
            resource_type="dataset",
            action="delete",
            fields_changed=[],
            dry_run=dry_run,
            execute=lambda: datasets.delete_dataset(client, dataset_id),
            resource_id=dataset_id,
            before=before,
            preview_extras={"dependency_info": deps},
            result_extras={"dependency_info": deps},
        )

    @mcp.tool()
    @_handle_errors
    def delete_dataset_metric(
        dataset_id: int,
        metric_id: int,
        dry_run: bool = False,
    ) -> str:
        """Delete a saved metric from a dataset.

        Charts that reference the metric by name will stop rendering.

        Args:
            dataset_id: Dataset that owns the metric
            metric_id: Metric ID
            dry_run: If True, return a preview without deleting
        """
        client = _get_client()
        return _do_mutation(
            tool_name="delete_dataset_metric",
            resource_type="metric",
            action="delete",
            fields_changed=[],
            dry_run=dry_run,
            execute=lambda: metrics.delete_dataset_metric(client, dataset_id, metric_id),
            resource_id=metric_id,
            parent_id=dataset_id,
        )

    @mcp.tool()
    @_handle_errors
    def delete_calculated_column(
        dataset_id: int,
        column_id: int,
        dry_run: bool = False,
    ) -> str:
        """Delete a calculated column from a dataset.

        Args:
            dataset_id: Dataset that owns the column
            column_id: Column ID
            dry_run: If True, return a preview without deleting
        """
        client = _get_client()
        return _do_mutation(
            tool_name="delete_calculated_column",
            resource_type="column",
            action="delete",
            fields_changed=[],
            dry_run=dry_run,
            execute=lambda: columns.delete_calculated_column(client, dataset_id, column_id),
            resource_id=column_id,
            parent_id=dataset_id,
        )

    @mcp.tool()
    @_handle_errors
    def delete_chart(chart_id: int, dry_run: bool = False) -> str:
        """Delete a chart.  Its previous state is saved to the audit snapshots.

        Args:
            chart_id: ID of the chart to delete
            dry_run: If True, return a preview without deleting
        """
        client = _get_client()
        before = capture_before(client, "chart", chart_id)
        return _do_mutation(
            tool_name="delete_chart",
            resource_type="chart",
            action="delete",
            fields_changed=[],
            dry_run=dry_run,
            execute=lambda: charts.delete_chart(client, chart_id),
            resource_id=chart_id,
            before=before,
        )

    @mcp.tool()
    @_handle_errors
    def delete_dashboard(dashboard_id: int, dry_run: bool = False) -> str:
        """Delete a dashboard.  Charts on it are kept.

        Args:
            dashboard_id: ID of the dashboard to delete
            dry_run: If True, return a preview without deleting
        """
        client = _get_client()
        before = capture_before(client, "dashboard", dashboard_id)
        return _do_mutation(
            tool_name="delete_dashboard",
            resource_type="dashboard",
            action="delete",
            fields_changed=[],
            dry_run=dry_run,
            execute=lambda: dashboards.delete_dashboard(client, dashboard_id),
            resource_id=dashboard_id,
            before=before,
        )


# ===================================================================
# Entry point
# ===================================================================


def main():
    mcp.run()


if __name__ == "__main__":
    main()
