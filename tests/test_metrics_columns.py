import pytest

from superset_py import columns, metrics

DATASET = {
    "id": 7,
    "table_name": "orders",
    "columns": [
        {"id": 1, "column_name": "amount", "type": "FLOAT"},
        {"id": 2, "column_name": "net", "expression": "amount - fee", "type": "FLOAT"},
    ],
    "metrics": [
        {"id": 10, "metric_name": "count", "expression": "COUNT(*)"},
        {"id": 11, "metric_name": "revenue", "expression": "SUM(amount)"},
    ],
}


def _echo_put(call):
    return {"result": call["json"]}


def _client(make_client, **extra):
    routes = {"GET api/v1/dataset/7": {"result": DATASET}, "PUT api/v1/dataset/7": _echo_put}
    routes.update(extra)
    return make_client(routes)


def test_create_metric_appends_to_full_list(make_client) -> None:
    client, session = _client(make_client)
    created = metrics.create_dataset_metric(
        client, 7, "avg_amount", "AVG(amount)", d3format=",.2f",
    )
    assert created.metric_name == "avg_amount"
    sent = session.calls[-1]["json"]["metrics"]
    assert [m["metric_name"] for m in sent] == ["count", "revenue", "avg_amount"]
    assert sent[-1] == {
        "metric_name": "avg_amount", "expression": "AVG(amount)", "d3format": ",.2f",
    }


def test_create_metric_rejects_duplicate_name(make_client) -> None:
    client, session = _client(make_client)
    with pytest.raises(ValueError, match="already exists"):
        metrics.create_dataset_metric(client, 7, "count", "COUNT(1)")
    assert session.paths("PUT") == []


def test_update_metric_patches_only_given_fields(make_client) -> None:
    client, session = _client(make_client)
    updated = metrics.update_dataset_metric(client, 7, 11, d3format="$,.0f")
    assert updated.id == 11
    assert updated.expression == "SUM(amount)"
    assert updated.d3format == "$,.0f"


def test_update_missing_metric_fails_before_write(make_client) -> None:
    client, session = _client(make_client)
    with pytest.raises(ValueError, match="Metric 99 does not exist"):
        metrics.update_dataset_metric(client, 7, 99, expression="x")
    assert session.paths("PUT") == []


def test_batch_update_with_unknown_id_changes_nothing(make_client) -> None:
    client, session = _client(make_client)
    with pytest.raises(ValueError, match=r"\[98, 99\].*nothing was changed"):
        metrics.update_dataset_metrics(
            client,
            7,
            [{"id": 10, "verbose_name": "Rows"}, {"id": 98}, {"id": 99}],
        )
    assert session.paths("PUT") == []


def test_batch_update_mixes_edits_and_additions(make_client) -> None:
    client, session = _client(make_client)
    saved = metrics.update_dataset_metrics(
        client,
        7,
        [
            {"id": 10, "verbose_name": "Rows"},
            {"metric_name": "fees", "expression": "SUM(fee)"},
        ],
    )
    assert [m.metric_name for m in saved] == ["count", "revenue", "fees"]
    assert saved[0].verbose_name == "Rows"
    assert len(session.paths("PUT")) == 1


def test_delete_metric_puts_remaining_list(make_client) -> None:
    client, session = _client(make_client)
    metrics.delete_dataset_metric(client, 7, 10)
    put = next(c for c in session.calls if c["method"] == "PUT")
    assert [m["id"] for m in put["json"]["metrics"]] == [11]


def test_calculated_column_gets_defaults(make_client) -> None:
    client, session = _client(make_client)
    created = columns.create_calculated_column(client, 7, "gross", "amount + fee")
    assert created.column_name == "gross"
    sent = session.calls[-1]["json"]["columns"][-1]
    assert sent["type"] == "UNKNOWN"
    assert sent["is_active"] is True
    assert sent["filterable"] is True and sent["groupby"] is True


def test_calculated_column_requires_expression(make_client) -> None:
    client, session = _client(make_client)
    with pytest.raises(ValueError, match="non-empty expression"):
        columns.create_calculated_column(client, 7, "gross", "   ")
    assert session.calls == []


def test_update_missing_column_fails_before_write(make_client) -> None:
    client, session = _client(make_client)
    with pytest.raises(ValueError, match="Column 42 does not exist"):
        columns.update_calculated_column(client, 7, 42, expression="1")
    assert session.paths("PUT") == []


def test_delete_column_uses_column_endpoint(make_client) -> None:
    client, session = _client(
        make_client, **{"DELETE api/v1/dataset/7/column/2": {"message": "OK"}}
    )
    assert columns.delete_calculated_column(client, 7, 2) == {"message": "OK"}
    assert session.paths("DELETE") == ["api/v1/dataset/7/column/2"]


def test_only_expression_columns_are_calculated(make_client) -> None:
    client, _ = _client(make_client)
    found = columns.get_dataset_columns(client, 7)
    assert [c.column_name for c in found if c.is_calculated] == ["net"]
