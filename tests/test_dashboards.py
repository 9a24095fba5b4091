import json

import pytest

from superset_py import dashboards
from superset_py.errors import ParseError

METADATA = {
    "native_filter_configuration": [
        {
            "id": "NATIVE_FILTER-region",
            "filterType": "filter_select",
            "targets": [{"datasetId": 7, "column": {"name": "region"}}],
            "chartsInScope": [3],
            "defaultDataMask": {"filterState": {"value": ["EU"]}},
        },
        {
            "id": "NATIVE_FILTER-other-dataset",
            "filterType": "filter_select",
            "targets": [{"datasetId": 8, "column": {"name": "region"}}],
            "chartsInScope": [3],
        },
        {
            "id": "NATIVE_FILTER-excluded",
            "filterType": "filter_time",
            "targets": [{"datasetId": 7, "column": {"name": "ds"}}],
            "scope": {"rootPath": ["ROOT_ID"], "excluded": [3]},
        },
        {
            "id": "NATIVE_FILTER-global",
            "filterType": "filter_range",
            "targets": [{"datasetId": 7, "column": {"name": "amount"}}],
            "scope": {"rootPath": ["ROOT_ID"], "excluded": []},
        },
    ]
}

DASHBOARD = {
    "id": 12,
    "dashboard_title": "Sales",
    "slug": "sales",
    "json_metadata": json.dumps(METADATA),
}

CHARTS = [
    {"id": 3, "slice_name": "Orders by region", "form_data": {"datasource": "7__table"}},
    {"id": 4, "slice_name": "Returns", "form_data": {"datasource": "9__table"}},
]

CHART = {
    "id": 3,
    "slice_name": "Orders by region",
    "datasource_id": 7,
    "params": json.dumps({"metrics": ["revenue", {"expressionType": "SIMPLE",
                          "aggregate": "MAX", "column": {"column_name": "amount"},
                          "label": "max_amount"}], "groupby": ["region"]}),
}

DATASET = {
    "id": 7,
    "table_name": "orders",
    "columns": [
        {"id": 1, "column_name": "region"},
        {"id": 2, "column_name": "net", "expression": "amount - fee"},
    ],
    "metrics": [
        {"id": 10, "metric_name": "count", "expression": "COUNT(*)"},
        {"id": 11, "metric_name": "revenue", "expression": "SUM(amount)"},
    ],
}


def _routes(**extra) -> dict:
    routes = {
        "GET api/v1/dashboard/12": {"result": DASHBOARD},
        "GET api/v1/dashboard/12/charts": {"result": CHARTS},
        "GET api/v1/chart/3": {"result": CHART},
        "GET api/v1/dataset/7": {"result": DATASET},
    }
    routes.update(extra)
    return routes


def test_dashboard_charts_enrichment_fails_soft(make_client) -> None:
    client, session = make_client(_routes())
    found = dashboards.get_dashboard_charts(client, 12)
    assert [(c.id, c.dataset_id, c.dataset_name) for c in found] == [
        (3, 7, "orders"),
        (4, 9, "N/A"),
    ]
    assert session.count("GET", "api/v1/dataset/9") == 1


def test_dashboard_filters_are_parsed_metadata(make_client) -> None:
    client, _ = make_client(_routes())
    assert dashboards.get_dashboard_filters(client, 12) == METADATA


def test_malformed_dashboard_metadata_is_fatal(make_client) -> None:
    broken = {**DASHBOARD, "json_metadata": "{broken"}
    client, _ = make_client(_routes(**{"GET api/v1/dashboard/12": {"result": broken}}))
    with pytest.raises(ParseError, match="json_metadata"):
        dashboards.get_dashboard_filters(client, 12)


def test_applied_filters_follow_scope_and_dataset() -> None:
    applied = dashboards.applied_filters_for(METADATA, 3, 7)
    assert [f.filter_id for f in applied] == [
        "NATIVE_FILTER-region",
        "NATIVE_FILTER-global",
    ]
    assert applied[0].column == "region"
    assert applied[0].value == {"value": ["EU"]}
    assert applied[0].scope == {"charts": [3], "tabs": []}


def test_chart_query_context_merges_dashboard_and_dataset(make_client) -> None:
    client, _ = make_client(_routes())
    ctx = dashboards.get_chart_query_context(client, 12, 3)

    assert ctx.dashboard_id == 12
    assert ctx.dataset_id == 7
    assert ctx.dataset_name == "orders"
    assert ctx.chart_params["groupby"] == ["region"]
    assert [m["metric_name"] for m in ctx.used_metrics] == ["revenue", "max_amount"]
    assert ctx.used_metrics[1]["expression"] == "MAX(amount)"
    assert [c["column_name"] for c in ctx.calculated_columns] == ["net"]
    final = ctx.final_query_context
    assert final["dashboard_id"] == 12
    assert final["groupby"] == ["region"]
    assert [f["filter_id"] for f in final["applied_dashboard_filters"]] == [
        "NATIVE_FILTER-region",
        "NATIVE_FILTER-global",
    ]


def test_chart_query_context_tolerates_bad_params_and_missing_dataset(make_client) -> None:
    chart = {**CHART, "params": "{nope"}
    client, _ = make_client(
        _routes(**{
            "GET api/v1/chart/3": {"result": chart},
            "GET api/v1/dataset/7": (500, {"message": "boom"}),
        })
    )
    ctx = dashboards.get_chart_query_context(client, 12, 3)
    assert ctx.chart_params == {}
    assert ctx.used_metrics == []
    assert ctx.calculated_columns == []
    assert len(ctx.applied_filters) == 2


def test_chart_not_on_dashboard_is_rejected(make_client) -> None:
    client, _ = make_client(_routes())
    with pytest.raises(ValueError, match="Chart 99 not found in dashboard 12"):
        dashboards.get_chart_query_context(client, 12, 99)


def test_create_dashboard_returns_new_id(make_client) -> None:
    client, session = make_client(
        {"POST api/v1/dashboard": (201, {"id": 30, "result": {"dashboard_title": "New"}})}
    )
    result = dashboards.create_dashboard(client, "New", slug="new")
    assert result == {"dashboard_title": "New", "id": 30}
    assert session.calls[-1]["json"] == {
        "dashboard_title": "New", "published": False, "slug": "new",
    }


def test_dashboard_charts_survive_malformed_dataset(make_client) -> None:
    nullable = {
        "id": 8,
        "table_name": "returns",
        "columns": [{"column_name": "ds", "is_dttm": None, "filterable": None}],
    }
    broken = {"id": 7, "table_name": "orders", "columns": [{"type": "INT"}]}
    charts = [
        {"id": 3, "slice_name": "Orders", "form_data": {"datasource": "7__table"}},
        {"id": 4, "slice_name": "Returns", "form_data": {"datasource": "8__table"}},
    ]
    client, _ = make_client(_routes(**{
        "GET api/v1/dashboard/12/charts": {"result": charts},
        "GET api/v1/dataset/7": {"result": broken},
        "GET api/v1/dataset/8": {"result": nullable},
    }))
    found = dashboards.get_dashboard_charts(client, 12)
    assert [c.dataset_name for c in found] == ["N/A", "returns"]


def test_chart_query_context_survives_malformed_dataset(make_client) -> None:
    broken = {**DATASET, "metrics": [{"expression": "COUNT(*)"}]}
    client, _ = make_client(_routes(**{"GET api/v1/dataset/7": {"result": broken}}))
    ctx = dashboards.get_chart_query_context(client, 12, 3)
    assert ctx.used_metrics == []
    assert ctx.calculated_columns == []
    assert [f.filter_id for f in ctx.applied_filters] == [
        "NATIVE_FILTER-region",
        "NATIVE_FILTER-global",
    ]
