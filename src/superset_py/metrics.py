"""Saved-metric CRUD on a dataset.

Superset has no per-metric endpoint: every change reads the dataset, edits
the ``metrics`` list, and PUTs the whole list back.  There is no rollback
if the PUT fails half-way through a batch.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from superset_py._helpers import _changed_fields, _result
from superset_py.datasets import _dataset_path, get_dataset
from superset_py.errors import wrap_errors
from superset_py.models import DatasetMetric

if TYPE_CHECKING:
    from superset_py.client import SupersetClient

_log = logging.getLogger("superset-mcp")

# Fields the dataset PUT endpoint accepts for a metric.
METRIC_FIELDS: tuple[str, ...] = (
    "id",
    "metric_name",
    "expression",
    "metric_type",
    "description",
    "verbose_name",
    "d3format",
    "warning_text",
    "extra",
    "is_restricted",
)


def _clean_metric(metric: dict[str, Any]) -> dict[str, Any]:
    return {k: metric[k] for k in METRIC_FIELDS if metric.get(k) is not None}


def _current_metrics(client: SupersetClient, dataset_id: int) -> list[dict[str, Any]]:
    dataset = get_dataset(client, dataset_id)
    return [_clean_metric(m.to_dict()) for m in dataset.metrics]


def _put_metrics(
    client: SupersetClient,
    dataset_id: int,
    metrics: list[dict[str, Any]],
    operation: str,
) -> list[DatasetMetric]:
    with wrap_errors(operation):
        body = client.put(_dataset_path(dataset_id), json={"metrics": metrics})
    returned = _result(body)
    saved = returned.get("metrics") if isinstance(returned, dict) else None
    if not isinstance(saved, list):
        saved = metrics
    return [DatasetMetric.model_validate(m) for m in saved]


def get_dataset_metrics(client: SupersetClient, dataset_id: int) -> list[DatasetMetric]:
    return get_dataset(client, dataset_id).metrics


def create_dataset_metric(
    client: SupersetClient,
    dataset_id: int,
    metric_name: str,
    expression: str,
    metric_type: str | None = None,
    description: str | None = None,
    verbose_name: str | None = None,
    d3format: str | None = None,
    warning_text: str | None = None,
    extra: str | None = None,
) -> DatasetMetric:
    if not metric_name or not expression:
        raise ValueError("metric_name and expression are required.")

    current = _current_metrics(client, dataset_id)
    if any(m.get("metric_name") == metric_name for m in current):
        raise ValueError(
            f"Metric {metric_name!r} already exists on dataset {dataset_id}."
        )
    new_metric = _changed_fields(
        metric_name=metric_name,
        expression=expression,
        metric_type=metric_type,
        description=description,
        verbose_name=verbose_name,
        d3format=d3format,
        warning_text=warning_text,
        extra=extra,
    )
    saved = _put_metrics(
        client,
        dataset_id,
        current + [new_metric],
        f"create metric {metric_name!r} on dataset {dataset_id}",
    )
    for metric in reversed(saved):
        if metric.metric_name == metric_name:
            return metric
    return DatasetMetric.model_validate(new_metric)


def update_dataset_metric(
    client: SupersetClient,
    dataset_id: int,
    metric_id: int,
    **fields: Any,
) -> DatasetMetric:
    """Apply *fields* to one existing metric.  ``None`` values are ignored."""
    changes = _changed_fields(**fields)
    changes.pop("id", None)
    if not changes:
        raise ValueError("Provide at least one metric field to update.")

    current = _current_metrics(client, dataset_id)
    index = next(
        (i for i, m in enumerate(current) if m.get("id") == metric_id), None,
    )
    if index is None:
        raise ValueError(f"Metric {metric_id} does not exist")

    current[index] = {**current[index], **changes}
    saved = _put_metrics(
        client,
        dataset_id,
        current,
        f"update metric {metric_id} on dataset {dataset_id}",
    )
    for metric in saved:
        if metric.id == metric_id:
            return metric
    return DatasetMetric.model_validate(current[index])


def update_dataset_metrics(
    client: SupersetClient,
    dataset_id: int,
    updates: list[dict[str, Any]],
) -> list[DatasetMetric]:
    """Batch edit: entries with ``id`` patch that metric, entries without are added.

    Every referenced id is checked before anything is written; if any is
    unknown the call fails naming all of them.
    """
    if not updates:
        raise ValueError("updates must contain at least one metric.")

    current = _current_metrics(client, dataset_id)
    by_id = {m.get("id"): i for i, m in enumerate(current)}

    missing = [u["id"] for u in updates if "id" in u and u["id"] not in by_id]
    if missing:
        raise ValueError(
            f"Metric(s) {missing} do not exist on dataset {dataset_id}; "
            "nothing was changed."
        )

    for idx, update in enumerate(updates):
        if "id" in update:
            i = by_id[update["id"]]
            current[i] = {**current[i], **_clean_metric(update)}
            continue
        new_metric = _clean_metric(update)
        if not new_metric.get("metric_name") or not new_metric.get("expression"):
            raise ValueError(
                f"updates[{idx}] has no id, so it needs metric_name and expression."
            )
        current.append(new_metric)

    _log.info(
        "update_dataset_metrics dataset=%s entries=%d", dataset_id, len(updates),
    )
    return _put_metrics(
        client,
        dataset_id,
        current,
        f"update metrics on dataset {dataset_id}",
    )


def delete_dataset_metric(
    client: SupersetClient,
    dataset_id: int,
    metric_id: int,
) -> None:
    current = _current_metrics(client, dataset_id)
    remaining = [m for m in current if m.get("id") != metric_id]
    if len(remaining) == len(current):
        raise ValueError(f"Metric {metric_id} does not exist")
    _put_metrics(
        client,
        dataset_id,
        remaining,
        f"delete metric {metric_id} on dataset {dataset_id}",
    )
