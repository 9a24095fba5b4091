"""Dataset columns and calculated (SQL-expression) columns."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from superset_py._helpers import _changed_fields, _result
from superset_py.datasets import _dataset_path, get_dataset
from superset_py.errors import wrap_errors
from superset_py.models import DatasetColumn

if TYPE_CHECKING:
    from superset_py.client import SupersetClient

# Fields the dataset PUT endpoint accepts for a column.
COLUMN_FIELDS: tuple[str, ...] = (
    "id",
    "column_name",
    "expression",
    "type",
    "description",
    "verbose_name",
    "filterable",
    "groupby",
    "is_dttm",
    "is_active",
    "extra",
    "advanced_data_type",
    "python_date_format",
    "uuid",
)


def _clean_column(column: dict[str, Any]) -> dict[str, Any]:
    return {k: column[k] for k in COLUMN_FIELDS if column.get(k) is not None}


def _current_columns(client: SupersetClient, dataset_id: int) -> list[dict[str, Any]]:
    dataset = get_dataset(client, dataset_id)
    return [_clean_column(c.to_dict()) for c in dataset.columns]


def _put_columns(
    client: SupersetClient,
    dataset_id: int,
    columns: list[dict[str, Any]],
    operation: str,
) -> list[DatasetColumn]:
    with wrap_errors(operation):
        body = client.put(_dataset_path(dataset_id), json={"columns": columns})
    returned = _result(body)
    saved = returned.get("columns") if isinstance(returned, dict) else None
    if not isinstance(saved, list):
        saved = columns
    return [DatasetColumn.model_validate(c) for c in saved]


def get_dataset_columns(client: SupersetClient, dataset_id: int) -> list[DatasetColumn]:
    """Physical and calculated columns; calculated ones have an ``expression``."""
    return get_dataset(client, dataset_id).columns


def create_calculated_column(
    client: SupersetClient,
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
) -> DatasetColumn:
    if not column_name or not expression or not expression.strip():
        raise ValueError("column_name and a non-empty expression are required.")

    current = _current_columns(client, dataset_id)
    if any(c.get("column_name") == column_name for c in current):
        raise ValueError(
            f"Column {column_name!r} already exists on dataset {dataset_id}."
        )
    new_column = _changed_fields(
        column_name=column_name,
        expression=expression,
        type=type or "UNKNOWN",
        description=description,
        verbose_name=verbose_name,
        filterable=filterable,
        groupby=groupby,
        is_dttm=is_dttm,
        is_active=True,
        python_date_format=python_date_format,
    )
    saved = _put_columns(
        client,
        dataset_id,
        current + [new_column],
        f"create calculated column {column_name!r} on dataset {dataset_id}",
    )
    for column in reversed(saved):
        if column.column_name == column_name:
            return column
    return DatasetColumn.model_validate(new_column)


def update_calculated_column(
    client: SupersetClient,
    dataset_id: int,
    column_id: int,
    **fields: Any,
) -> DatasetColumn:
    changes = _changed_fields(**fields)
    changes.pop("id", None)
    if not changes:
        raise ValueError("Provide at least one column field to update.")

    current = _current_columns(client, dataset_id)
    index = next(
        (i for i, c in enumerate(current) if c.get("id") == column_id), None,
    )
    if index is None:
        raise ValueError(f"Column {column_id} does not exist")

    current[index] = {**current[index], **changes}
    saved = _put_columns(
        client,
        dataset_id,
        current,
        f"update calculated column {column_id} on dataset {dataset_id}",
    )
    for column in saved:
        if column.id == column_id:
            return column
    return DatasetColumn.model_validate(current[index])


def delete_calculated_column(
    client: SupersetClient,
    dataset_id: int,
    column_id: int,
) -> dict[str, Any]:
    with wrap_errors(
        f"delete calculated column {column_id} from dataset {dataset_id}"
    ):
        body = client.delete(f"{_dataset_path(dataset_id)}/column/{column_id}")
    return body if isinstance(body, dict) else {}
