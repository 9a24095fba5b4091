import json

import pytest

from superset_py import _safety
from superset_py._safety import (
    MutationEntry,
    capture_before,
    check_dataset_dependents,
    record_mutation,
    validate_params_payload,
)


def test_params_payload_blocks_datasource_rebinding() -> None:
    with pytest.raises(ValueError, match="datasource_id"):
        validate_params_payload('{"datasource_id": 4}')


def test_params_payload_rejects_invalid_metric_shape() -> None:
    with pytest.raises(ValueError, match="aggregate"):
        validate_params_payload(
            '{"metrics":[{"expressionType":"SIMPLE","column":{"column_name":"value"}}]}'
        )


def test_params_payload_rejects_non_object() -> None:
    with pytest.raises(ValueError, match="JSON object"):
        validate_params_payload("[1, 2]")


def test_params_payload_warns_on_unknown_columns() -> None:
    _, warnings = validate_params_payload(
        '{"groupby":["known_col"],"filters":[{"col":"missing_col"}]}',
        dataset_columns={"known_col"},
        dataset_metrics={"saved_metric"},
    )
    assert warnings
    assert "unknown dataset columns" in warnings[0]


def test_record_mutation_appends_jsonl(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(_safety, "AUDIT_DIR", tmp_path)
    record_mutation(MutationEntry(
        tool_name="update_chart",
        resource_type="chart",
        resource_id=3,
        action="update",
        fields_changed=["slice_name"],
    ))
    record_mutation(MutationEntry(
        tool_name="delete_dataset_metric",
        resource_type="metric",
        resource_id=10,
        parent_id=7,
        action="delete",
        dry_run=True,
    ))
    lines = (tmp_path / "mutations.jsonl").read_text().splitlines()
    assert len(lines) == 2
    first, second = (json.loads(line) for line in lines)
    assert first["tool_name"] == "update_chart"
    assert first["fields_changed"] == ["slice_name"]
    assert second["parent_id"] == 7
    assert second["dry_run"] is True


def test_capture_before_writes_snapshot(monkeypatch, tmp_path, make_client) -> None:
    monkeypatch.setattr(_safety, "AUDIT_DIR", tmp_path)
    client, _ = make_client({"GET api/v1/chart/3": {"result": {"id": 3, "slice_name": "A"}}})
    before = capture_before(client, "chart", 3)
    assert before == {"id": 3, "slice_name": "A"}
    snaps = list((tmp_path / "snapshots").glob("chart_3_*.json"))
    assert len(snaps) == 1
    assert json.loads(snaps[0].read_text())["slice_name"] == "A"


def test_capture_before_reports_fetch_failure(monkeypatch, tmp_path, make_client) -> None:
    monkeypatch.setattr(_safety, "AUDIT_DIR", tmp_path)
    client, _ = make_client()
    before = capture_before(client, "dashboard", 404)
    assert "_snapshot_error" in before
    assert "404" in before["_snapshot_error"]


def test_check_dataset_dependents_lists_charts(make_client) -> None:
    client, session = make_client({
        "GET api/v1/chart": {
            "count": 2,
            "result": [
                {"id": 1, "slice_name": "A", "datasource_id": 7},
                {"id": 2, "slice_name": "B", "datasource_id": 7},
            ],
        }
    })
    deps = check_dataset_dependents(client, 7)
    assert deps["chart_count"] == 2
    assert [c["name"] for c in deps["affected_charts"]] == ["A", "B"]
    q = json.loads(session.calls[-1]["params"]["q"])
    assert q["filters"] == [{"col": "datasource_id", "opr": "eq", "value": 7}]
