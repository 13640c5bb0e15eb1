import json
from pathlib import Path

from ctxhub_common.context import get_request_id, set_request_id
from ctxhub_common.errors import NotFound, error_payload, typed_error
from ctxhub_common.telemetry import DEFAULT_TELEMETRY_FILE, log_event, telemetry_recent
from ctxhub_common.tooling import InstrumentConfig, instrument_sync_tool


def _lines(tmp_path: Path) -> list[dict]:
    p = tmp_path / "telemetry" / DEFAULT_TELEMETRY_FILE
    return [json.loads(line) for line in p.read_text(encoding="utf-8").splitlines()]


def test_log_event_redacts_credentials_and_secrets(tmp_path):
    log_event(
        "tool",
        "x",
        {"credentials": {"password": "pw"}, "args": {"password": "pw2", "Authorization": "Bearer abc"}, "k": "v"},
        corr_id="abc123",
    )
    row = _lines(tmp_path)[-1]
    assert row["corr_id"] == "abc123"
    assert row["args"]["k"] == "v"
    assert row["args"]["credentials"] == "***redacted***"
    assert row["args"]["args"]["password"] == "***redacted***"
    assert row["args"]["args"]["Authorization"] == "Bearer ***redacted***"


def test_disable_flag(tmp_path, monkeypatch):
    monkeypatch.setenv("CTXHUB_DISABLE_TELEMETRY", "1")
    log_event("tool", "x", {})
    assert not (tmp_path / "telemetry" / DEFAULT_TELEMETRY_FILE).exists()
    assert telemetry_recent()["records"] == []


def test_recent_is_bounded():
    for i in range(5):
        log_event("tool", f"t{i}", {})
    recs = telemetry_recent(n=3)["records"]
    assert [r["name"] for r in recs] == ["t2", "t3", "t4"]


def test_instrumented_tool_converts_exceptions(tmp_path):
    @instrument_sync_tool(InstrumentConfig(kind="tool", name="demo.v1", client_id="test"))
    def demo(owner_id: str, credentials: dict) -> dict:
        raise NotFound("Connection not found")

    out = demo("u1", {"password": "pw"})
    assert out["error"] == {"code": "not_found", "message": "Connection not found"}
    assert out["corr_id"]

    row = _lines(tmp_path)[-1]
    assert row["ok"] is False
    assert row["args"]["args"]["credentials"] == "***redacted***"


def test_error_payload_shapes():
    assert error_payload(ValueError("bad")) == {"error": {"code": "internal", "message": "bad"}}
    assert typed_error("x", "y", details={"a": 1}, user="u") == {
        "error": {"code": "x", "message": "y", "details": {"a": 1}},
        "user": "u",
    }


def test_log_event_carries_current_request_id(tmp_path):
    set_request_id("req-outer")
    log_event("message", "discover", {}, corr_id="corr-1")
    row = _lines(tmp_path)[-1]
    assert row["request_id"] == "req-outer"
    assert row["corr_id"] == "corr-1"
    assert get_request_id() == "req-outer"
