"""Database connections and synchronous SQL Lab execution."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from superset_py._helpers import DEFAULT_PAGE_SIZE, build_list_query
from superset_py.errors import SqlExecutionError, SupersetError, format_sql_error, wrap_errors
from superset_py.models import Database, ListPage, SqlResult

if TYPE_CHECKING:
    from superset_py.client import SupersetClient

_log = logging.getLogger("superset-mcp")

DATABASE_PATH = "api/v1/database/"
SQLLAB_EXECUTE_PATH = "api/v1/sqllab/execute/"

DEFAULT_QUERY_LIMIT = 1000


def list_databases(
    client: SupersetClient,
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> ListPage[Database]:
    with wrap_errors("list databases"):
        body = client.get(DATABASE_PATH, params=build_list_query(page, page_size))
    rows = body.get("result", []) if isinstance(body, dict) else []
    return ListPage[Database](
        count=body.get("count", len(rows)) if isinstance(body, dict) else len(rows),
        result=[Database.model_validate(row) for row in rows],
    )


def execute_sql(
    client: SupersetClient,
    database_id: int,
    sql: str,
    schema: str | None = None,
    limit: int = DEFAULT_QUERY_LIMIT,
    expand_data: bool = True,
) -> SqlResult:
    """Run *sql* synchronously through SQL Lab.

    Failures raise :class:`SqlExecutionError` whose text includes the query,
    the database id, and any issue codes Superset returned.
    """
    if not sql or not sql.strip():
        raise ValueError("SQL query cannot be empty.")
    payload: dict[str, Any] = {
        "database_id": database_id,
        "sql": sql,
        "schema": schema,
        "queryLimit": limit,
        "runAsync": False,
        "expand_data": expand_data,
        "select_as_cta": False,
        "ctas_method": "TABLE",
        "json": True,
    }
    try:
        body = client.post(SQLLAB_EXECUTE_PATH, json=payload)
    except SupersetError as exc:
        _log.warning("execute_sql failed database=%s: %s", database_id, exc)
        raise SqlExecutionError(exc, format_sql_error(exc, sql, database_id)) from exc

    result = SqlResult.model_validate(body if isinstance(body, dict) else {})
    _log.info(
        "execute_sql database=%s rows=%d status=%s",
        database_id, len(result.data), result.status,
    )
    return result
