import json

import pytest

from superset_py import charts
from superset_py.errors import ParseError


def _chart(**overrides) -> dict:
    chart = {
        "id": 3,
        "slice_name": "Orders by region",
        "viz_type": "table",
        "datasource_id": 7,
        "datasource_type": "table",
        "params": json.dumps({
            "datasource": "7__table",
            "groupby": ["col"],
            "metrics": ["cnt"],
            "row_limit": 500,
        }),
        "query_context": None,
    }
    chart.update(overrides)
    return chart


def test_query_context_is_synthesized_from_params() -> None:
    ctx = charts.build_query_context(
        {"datasource": "7__table", "groupby": ["col"], "metrics": ["cnt"], "row_limit": 500}
    )
    assert ctx["datasource"] == {"id": 7, "type": "table"}
    query = ctx["queries"][0]
    assert query["columns"] == ["col"]
    assert query["metrics"] == ["cnt"]
    assert query["row_limit"] == 500
    assert query["orderby"] == [["cnt", False]]
    assert query["time_range"] == "No filter"
    assert ctx["result_type"] == "full"


def test_query_context_splits_adhoc_filters() -> None:
    ctx = charts.build_query_context({
        "datasource": {"id": 4, "type": "table"},
        "metric": "total",
        "adhoc_filters": [
            {"expressionType": "SIMPLE", "subject": "region", "operator": "==",
             "comparator": "EU", "clause": "WHERE"},
            {"expressionType": "SQL", "sqlExpression": "amount > 0", "clause": "WHERE"},
            {"expressionType": "SQL", "sqlExpression": "SUM(amount) > 10", "clause": "HAVING"},
        ],
    })
    query = ctx["queries"][0]
    assert ctx["datasource"] == {"id": 4, "type": "table"}
    assert query["metrics"] == ["total"]
    assert query["filters"] == [{"col": "region", "op": "==", "val": "EU"}]
    assert query["extras"]["where"] == "(amount > 0)"
    assert query["extras"]["having"] == "(SUM(amount) > 10)"
    assert query["row_limit"] == charts.DEFAULT_ROW_LIMIT


def test_stored_query_context_wins(make_client) -> None:
    stored = {"datasource": {"id": 7, "type": "table"}, "queries": [{"filters": []}]}
    client, _ = make_client(
        {"GET api/v1/chart/3": {"result": _chart(query_context=json.dumps(stored))}}
    )
    assert charts.get_chart_query_context(client, 3) == stored


def test_unparseable_query_context_falls_back_to_params(make_client) -> None:
    client, _ = make_client(
        {"GET api/v1/chart/3": {"result": _chart(query_context="{not json")}}
    )
    ctx = charts.get_chart_query_context(client, 3)
    assert ctx["queries"][0]["columns"] == ["col"]


def test_get_chart_params_raises_on_malformed_json(make_client) -> None:
    client, _ = make_client({"GET api/v1/chart/3": {"result": _chart(params="{oops")}})
    with pytest.raises(ParseError, match="chart 3 params"):
        charts.get_chart_params(client, 3)


def test_filter_validation_normalizes_ops_and_drops_unknown_keys() -> None:
    cleaned = charts.validate_chart_filters(
        [{"col": "name", "op": " like ", "val": "%a%", "junk": 1}]
    )
    assert cleaned == [{"col": "name", "op": "LIKE", "val": "%a%"}]


@pytest.mark.parametrize(
    "filters, message",
    [
        ("region", "must be a list"),
        ([{"op": "=="}], "'col' and 'op'"),
        ([{"col": "x", "op": "~="}], "unsupported op"),
    ],
)
def test_filter_validation_rejects_bad_input(filters, message) -> None:
    with pytest.raises(ValueError, match=message):
        charts.validate_chart_filters(filters)


def test_set_chart_filters_rewrites_every_query(make_client) -> None:
    stored = {
        "datasource": {"id": 7, "type": "table"},
        "queries": [{"filters": [{"col": "old", "op": "=="}]}, {"filters": []}],
        "form_data": {"viz_type": "table"},
    }
    client, session = make_client(
        {
            "GET api/v1/chart/3": {"result": _chart(query_context=json.dumps(stored))},
            "PUT api/v1/chart/3": {"result": {}},
        }
    )
    result = charts.set_chart_filters(client, 3, [{"col": "region", "op": "in", "val": ["EU"]}])

    expected = [{"col": "region", "op": "IN", "val": ["EU"]}]
    assert result["filters"] == expected
    sent = json.loads(session.calls[-1]["json"]["query_context"])
    assert [q["filters"] for q in sent["queries"]] == [expected, expected]
    assert sent["form_data"]["filters"] == expected


def test_get_chart_filters_reads_first_query(make_client) -> None:
    client, _ = make_client({"GET api/v1/chart/3": {"result": _chart()}})
    assert charts.get_chart_filters(client, 3) == []


def test_create_chart_merges_baseline_params(make_client) -> None:
    client, session = make_client({"POST api/v1/chart": (201, {"id": 21, "result": {}})})
    result = charts.create_chart(
        client, 7, "Revenue", "big_number_total",
        params={"metric": "revenue", "row_limit": 10},
        dashboards=[4],
    )
    assert result["id"] == 21
    payload = session.calls[-1]["json"]
    assert payload["datasource_id"] == 7
    assert payload["dashboards"] == [4]
    params = json.loads(payload["params"])
    assert params == {
        "viz_type": "big_number_total",
        "datasource": "7__table",
        "row_limit": 10,
        "adhoc_filters": [],
        "metric": "revenue",
    }


def test_update_chart_params_serializes_object(make_client) -> None:
    client, session = make_client({"PUT api/v1/chart/3": {"result": {"slice_name": "x"}}})
    result = charts.update_chart_params(client, 3, {"metrics": ["cnt"]})
    assert result["id"] == 3
    assert session.calls[-1]["json"] == {"params": '{"metrics": ["cnt"]}'}
