"""Typed records for the Superset entities and the client session."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Annotated, Any, Generic, Literal, TypeVar

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from superset_py.errors import ParseError

_log = logging.getLogger("superset-mcp")

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class Credentials(BaseModel):
    """Connection settings, fixed for the lifetime of a client."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "http://localhost:8088"
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    access_token: str | None = Field(default=None, repr=False)
    auth_provider: str = "db"

    @property
    def has_static_token(self) -> bool:
        return bool(self.access_token)

    @property
    def usable(self) -> bool:
        return self.has_static_token or bool(self.username and self.password)


class SessionState(BaseModel):
    """Tokens obtained at runtime. Owned by exactly one client."""

    access_token: str | None = Field(default=None, repr=False)
    csrf_token: str | None = Field(default=None, repr=False)
    cookie: str | None = Field(default=None, repr=False)
    authenticated_at: datetime | None = None

    def clear(self) -> None:
        self.access_token = None
        self.csrf_token = None
        self.cookie = None
        self.authenticated_at = None


class RequestIntent(BaseModel):
    """One outbound call, built per request and never stored."""

    method: HttpMethod
    path: str
    params: dict[str, Any] | None = None
    body: Any = None

    @property
    def mutating(self) -> bool:
        return self.method != "GET"


# ---------------------------------------------------------------------------
# JSON-string fields (params, query_context, json_metadata)
# ---------------------------------------------------------------------------


class RawJson(BaseModel):
    kind: Literal["raw"] = "raw"
    text: str


class ParsedJson(BaseModel):
    kind: Literal["parsed"] = "parsed"
    value: dict[str, Any] = Field(default_factory=dict)


JsonField = Annotated[RawJson | ParsedJson, Field(discriminator="kind")]

ParseFallback = Literal["raise", "empty"]


def wrap_json_field(value: Any) -> RawJson | ParsedJson:
    """Tag a server value as raw text or an already-parsed object."""
    if isinstance(value, (RawJson, ParsedJson)):
        return value
    if isinstance(value, dict):
        return ParsedJson(value=value)
    if value is None:
        return RawJson(text="")
    return RawJson(text=str(value))


def decode_json_field(
    value: Any,
    field: str,
    on_error: ParseFallback = "raise",
) -> dict[str, Any]:
    """Parse a JSON-string field into a dict.

    Empty or missing text decodes to ``{}``. Malformed text (or JSON that is
    not an object) raises :class:`ParseError` under ``"raise"``, or logs a
    warning and decodes to ``{}`` under ``"empty"``.
    """
    tagged = wrap_json_field(value)
    if isinstance(tagged, ParsedJson):
        return tagged.value
    if not tagged.text.strip():
        return {}
    try:
        parsed = json.loads(tagged.text)
    except json.JSONDecodeError as exc:
        detail = str(exc)
    else:
        if isinstance(parsed, dict):
            return parsed
        detail = f"expected a JSON object, got {type(parsed).__name__}"
    if on_error == "raise":
        raise ParseError(field, detail)
    _log.warning("could not parse %s, using {}: %s", field, detail)
    return {}


def encode_json_field(value: RawJson | ParsedJson | dict[str, Any]) -> str:
    tagged = wrap_json_field(value)
    if isinstance(tagged, RawJson):
        return tagged.text
    return json.dumps(tagged.value)


# ---------------------------------------------------------------------------
# Resource records
# ---------------------------------------------------------------------------


class _Record(BaseModel):
    # Unknown server fields pass through untouched.
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


R = TypeVar("R", bound=BaseModel)


def parse_record(model: type[R], data: Any, what: str) -> R:
    """Validate a server payload, raising :class:`ParseError` on a bad shape."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ParseError(what, f"{exc.error_count()} invalid field(s): {exc}") from exc


class DatasetColumn(_Record):
    id: int | None = None
    column_name: str
    expression: str | None = None
    type: str | None = None
    description: str | None = None
    verbose_name: str | None = None
    filterable: bool | None = None
    groupby: bool | None = None
    is_dttm: bool | None = None
    is_active: bool | None = None
    extra: str | None = None
    advanced_data_type: str | None = None
    python_date_format: str | None = None
    uuid: str | None = None

    @property
    def is_calculated(self) -> bool:
        return bool(self.expression and self.expression.strip())


class DatasetMetric(_Record):
    id: int | None = None
    metric_name: str
    expression: str | None = None
    metric_type: str | None = None
    description: str | None = None
    verbose_name: str | None = None
    d3format: str | None = None
    warning_text: str | None = None
    extra: str | None = None
    is_restricted: bool | None = None


class Dataset(_Record):
    id: int | None = None
    table_name: str | None = None
    schema_name: str | None = Field(default=None, alias="schema")
    database: dict[str, Any] | int | None = None
    sql: str | None = None
    description: str | None = None
    kind: str | None = None
    columns: list[DatasetColumn] = Field(default_factory=list)
    metrics: list[DatasetMetric] = Field(default_factory=list)

    @property
    def database_id(self) -> int | None:
        if isinstance(self.database, dict):
            return self.database.get("id")
        if isinstance(self.database, int):
            return self.database
        return (self.model_extra or {}).get("database_id")

    @property
    def is_virtual(self) -> bool:
        return bool(self.sql and self.sql.strip())

    def calculated_columns(self) -> list[DatasetColumn]:
        return [c for c in self.columns if c.is_calculated]


class Chart(_Record):
    id: int | None = None
    slice_name: str | None = None
    viz_type: str | None = None
    datasource_id: int | None = None
    datasource_type: str | None = None
    description: str | None = None
    params: str | None = None
    query_context: str | None = None


class DashboardChart(_Record):
    id: int
    slice_name: str | None = None
    viz_type: str | None = None
    form_data: dict[str, Any] = Field(default_factory=dict)
    dataset_id: int | None = None
    dataset_name: str = "N/A"


class Dashboard(_Record):
    id: int | None = None
    dashboard_title: str | None = None
    slug: str | None = None
    published: bool | None = None
    json_metadata: str | None = None
    position_json: str | None = None


class Database(_Record):
    id: int
    database_name: str | None = None
    backend: str | None = None
    expose_in_sqllab: bool | None = None
    allow_dml: bool | None = None


T = TypeVar("T")


class ListPage(BaseModel, Generic[T]):
    count: int = 0
    result: list[T] = Field(default_factory=list)


class SqlResult(_Record):
    """Synchronous SQL Lab response."""

    status: str | None = None
    query_id: int | None = None
    columns: list[dict[str, Any]] = Field(default_factory=list)
    data: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        names = []
        for col in self.columns:
            name = col.get("column_name") or col.get("name")
            if name is not None:
                names.append(str(name))
        return names

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.data, columns=self.column_names or None)


# ---------------------------------------------------------------------------
# Dashboard chart query context
# ---------------------------------------------------------------------------


class AppliedFilter(BaseModel):
    filter_id: str | None = None
    filter_type: str | None = None
    column: str | None = None
    value: Any = None
    scope: dict[str, Any] = Field(default_factory=dict)


class ChartQueryContext(BaseModel):
    """Everything needed to reproduce what a chart shows on a dashboard."""

    dashboard_id: int | str
    chart_id: int
    chart_name: str | None = None
    dataset_id: int | None = None
    dataset_name: str | None = None
    chart_params: dict[str, Any] = Field(default_factory=dict)
    used_metrics: list[dict[str, Any]] = Field(default_factory=list)
    calculated_columns: list[dict[str, Any]] = Field(default_factory=list)
    applied_filters: list[AppliedFilter] = Field(default_factory=list)
    final_query_context: dict[str, Any] = Field(default_factory=dict)
