import json

import pytest

from superset_py import datasets
from superset_py.errors import ParseError, ResourceError

VIRTUAL = {
    "id": 5,
    "table_name": "orders_v",
    "schema": "public",
    "database": {"id": 2, "database_name": "warehouse"},
    "sql": "SELECT foo FROM t WHERE ds = '{{ from_dttm }}'",
    "columns": [],
    "metrics": [],
}


def test_list_datasets_encodes_query_as_json(make_client) -> None:
    client, session = make_client(
        {"GET api/v1/dataset": {"count": 3, "result": [{"id": 1, "table_name": "a"}]}}
    )
    page = datasets.list_datasets(
        client,
        page=1,
        page_size=1,
        order_column="table_name",
        order_direction="asc",
        filters=[{"col": "table_name", "opr": "ct", "value": "a"}],
    )
    assert page.count == 3
    assert page.result[0].table_name == "a"
    q = json.loads(session.calls[-1]["params"]["q"])
    assert q == {
        "page": 1,
        "page_size": 1,
        "order_column": "table_name",
        "order_direction": "asc",
        "filters": [{"col": "table_name", "opr": "ct", "value": "a"}],
    }


def test_list_datasets_rejects_bad_direction(make_client) -> None:
    client, session = make_client()
    with pytest.raises(ValueError, match="order_direction"):
        datasets.list_datasets(client, order_direction="up")
    assert session.calls == []


def test_get_dataset_parses_schema_alias_and_database_id(make_client) -> None:
    client, _ = make_client({"GET api/v1/dataset/5": {"result": VIRTUAL}})
    ds = datasets.get_dataset(client, 5)
    assert ds.schema_name == "public"
    assert ds.database_id == 2
    assert ds.is_virtual
    assert ds.to_dict()["schema"] == "public"


def test_get_missing_dataset_wraps_upstream_error(make_client) -> None:
    client, _ = make_client()
    with pytest.raises(ResourceError) as exc:
        datasets.get_dataset(client, 404)
    assert exc.value.status_code == 404
    assert str(exc.value) == "Failed to get dataset 404: 404 NOT FOUND: Not found"


def test_create_dataset_surfaces_description_failure(make_client) -> None:
    client, session = make_client(
        {
            "POST api/v1/dataset": (201, {"id": 9, "result": {"table_name": "v"}}),
            "PUT api/v1/dataset/9": (422, {"message": "bad description"}),
        }
    )
    result = datasets.create_dataset(
        client, 2, "v", sql="SELECT 1", description="daily rollup",
    )
    assert result["id"] == 9
    assert result["database_id"] == 2
    assert "description update failed" in result["_warning"]
    post = next(c for c in session.calls if c["method"] == "POST" and c["path"] == "api/v1/dataset")
    assert post["json"] == {"database": 2, "table_name": "v", "sql": "SELECT 1"}


def test_update_dataset_passes_override_columns(make_client) -> None:
    client, session = make_client({"PUT api/v1/dataset/5": {"result": {"sql": "x"}}})
    result = datasets.update_dataset(client, 5, override_columns=True, sql="x")
    assert result == {"sql": "x", "id": 5}
    assert session.calls[-1]["params"] == {"override_columns": "true"}


def test_find_replace_writes_new_sql(make_client) -> None:
    client, session = make_client(
        {
            "GET api/v1/dataset/5": {"result": VIRTUAL},
            "PUT api/v1/dataset/5": {"result": {}},
        }
    )
    result = datasets.find_replace_dataset_sql(client, 5, "foo", "bar")
    assert result["replacements"] == 1
    assert result["updated"] is True
    assert session.calls[-1]["json"] == {
        "sql": "SELECT bar FROM t WHERE ds = '{{ from_dttm }}'"
    }


def test_find_replace_no_match_writes_nothing(make_client) -> None:
    client, session = make_client({"GET api/v1/dataset/5": {"result": VIRTUAL}})
    result = datasets.find_replace_dataset_sql(client, 5, "from_dttm", "x")
    assert result["replacements"] == 0
    assert result["updated"] is False
    assert "hint" in result
    assert session.paths("PUT") == []


def test_find_replace_dry_run_returns_preview(make_client) -> None:
    client, session = make_client({"GET api/v1/dataset/5": {"result": VIRTUAL}})
    result = datasets.find_replace_dataset_sql(client, 5, "foo", "bar", dry_run=True)
    assert result["dry_run"] is True
    assert result["previous_sql"] == VIRTUAL["sql"]
    assert session.paths("PUT") == []


def test_find_replace_rejects_physical_dataset(make_client) -> None:
    physical = {**VIRTUAL, "sql": None}
    client, _ = make_client({"GET api/v1/dataset/5": {"result": physical}})
    with pytest.raises(ValueError, match="physical table"):
        datasets.find_replace_dataset_sql(client, 5, "foo", "bar")


def test_get_dataset_accepts_null_column_flags(make_client) -> None:
    dataset = {
        **VIRTUAL,
        "columns": [{"column_name": "ds", "is_dttm": None, "groupby": None}],
    }
    client, _ = make_client({"GET api/v1/dataset/5": {"result": dataset}})
    ds = datasets.get_dataset(client, 5)
    assert ds.columns[0].is_dttm is None
    assert ds.columns[0].to_dict() == {"column_name": "ds"}


def test_get_dataset_with_bad_shape_raises_parse_error(make_client) -> None:
    dataset = {**VIRTUAL, "columns": [{"type": "INT"}]}
    client, _ = make_client({"GET api/v1/dataset/5": {"result": dataset}})
    with pytest.raises(ParseError, match="dataset 5"):
        datasets.get_dataset(client, 5)
