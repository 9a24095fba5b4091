"""Dataset CRUD, schema refresh, and Jinja-safe SQL find/replace."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from superset_py._helpers import DEFAULT_PAGE_SIZE, _result, build_list_query
from superset_py._sql import replace_sql_text
from superset_py.errors import SupersetError, wrap_errors
from superset_py.models import Dataset, ListPage, parse_record

if TYPE_CHECKING:
    from superset_py.client import SupersetClient

_log = logging.getLogger("superset-mcp")

DATASET_PATH = "api/v1/dataset/"


def _dataset_path(dataset_id: int) -> str:
    return f"{DATASET_PATH}{dataset_id}"


def list_datasets(
    client: SupersetClient,
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
    order_column: str | None = None,
    order_direction: str | None = None,
    filters: list[dict[str, Any]] | None = None,
    select_columns: list[str] | None = None,
) -> ListPage[Dataset]:
    params = build_list_query(
        page, page_size, order_column, order_direction, filters, select_columns,
    )
    with wrap_errors("list datasets"):
        body = client.get(DATASET_PATH, params=params)
    rows = body.get("result", []) if isinstance(body, dict) else []
    return ListPage[Dataset](
        count=body.get("count", len(rows)) if isinstance(body, dict) else len(rows),
        result=[Dataset.model_validate(row) for row in rows],
    )


def get_dataset(client: SupersetClient, dataset_id: int) -> Dataset:
    with wrap_errors(f"get dataset {dataset_id}"):
        body = client.get(_dataset_path(dataset_id))
    return parse_record(Dataset, _result(body), f"dataset {dataset_id}")


def create_dataset(
    client: SupersetClient,
    database_id: int,
    table_name: str,
    schema: str | None = None,
    sql: str | None = None,
    description: str | None = None,
) -> dict[str, Any]:
    """Register a physical table (no *sql*) or a virtual dataset (with *sql*).

    The description is not accepted by the create endpoint, so it is applied
    with a follow-up update.  If that update fails the dataset still exists;
    the failure is logged and surfaced as ``_warning`` in the result.
    """
    payload: dict[str, Any] = {"database": database_id, "table_name": table_name}
    if schema:
        payload["schema"] = schema
    if sql:
        payload["sql"] = sql

    with wrap_errors(f"create dataset {table_name!r}"):
        body = client.post(DATASET_PATH, json=payload)

    result: dict[str, Any] = dict(_result(body) or {})
    dataset_id = body.get("id") if isinstance(body, dict) else None
    result["id"] = dataset_id
    database = result.get("database")
    result["database_id"] = (
        database.get("id") if isinstance(database, dict) else database
    ) or database_id

    if description and dataset_id is not None:
        try:
            update_dataset(client, dataset_id, description=description)
            result["description"] = description
        except SupersetError as exc:
            _log.warning(
                "dataset %s created but description update failed: %s",
                dataset_id, exc,
            )
            result["_warning"] = (
                f"Dataset created but description update failed: {exc}"
            )
    return result


def update_dataset(
    client: SupersetClient,
    dataset_id: int,
    override_columns: bool = False,
    **fields: Any,
) -> dict[str, Any]:
    """PUT the given dataset fields.

    ``override_columns=True`` asks Superset to rebuild column metadata from
    the (new) SQL.
    """
    if not fields:
        raise ValueError("Provide at least one field to update.")
    params = {"override_columns": "true"} if override_columns else None
    with wrap_errors(f"update dataset {dataset_id}"):
        body = client.put(_dataset_path(dataset_id), json=fields, params=params)
    result = dict(_result(body) or {})
    result.setdefault("id", dataset_id)
    return result


def delete_dataset(client: SupersetClient, dataset_id: int) -> dict[str, Any]:
    with wrap_errors(f"delete dataset {dataset_id}"):
        body = client.delete(_dataset_path(dataset_id))
    return body if isinstance(body, dict) else {}


def refresh_dataset_schema(client: SupersetClient, dataset_id: int) -> dict[str, Any]:
    """Re-read the source table's columns into the dataset."""
    with wrap_errors(f"refresh schema of dataset {dataset_id}"):
        body = client.put(f"{_dataset_path(dataset_id)}/refresh")
    return body if isinstance(body, dict) else {}


def find_replace_dataset_sql(
    client: SupersetClient,
    dataset_id: int,
    find: str,
    replace: str,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Literal global replace inside a virtual dataset's SQL.

    Jinja blocks are left untouched.  Nothing is written when there is no
    match or when *dry_run* is set.
    """
    dataset = get_dataset(client, dataset_id)
    if not dataset.is_virtual:
        raise ValueError(
            f"Dataset {dataset_id} is a physical table and has no SQL to edit."
        )

    new_sql, count = replace_sql_text(dataset.sql or "", find, replace)
    out: dict[str, Any] = {
        "dataset_id": dataset_id,
        "replacements": count,
        "updated": False,
        "sql": new_sql,
    }
    if count == 0:
        out["hint"] = f"No occurrences of {find!r} found outside Jinja blocks."
        return out
    if dry_run:
        out["dry_run"] = True
        out["previous_sql"] = dataset.sql
        return out

    update_dataset(client, dataset_id, sql=new_sql)
    out["updated"] = True
    _log.info(
        "find_replace_dataset_sql dataset=%s replacements=%d", dataset_id, count,
    )
    return out
