import json

import pytest
from pydantic import BaseModel

from ctxhub_common.errors import AuthenticationFailed, InvalidArgument, NotFound, UpstreamError
from ctxhub_mcp.adapters import SalesforceAdapter, ToolSpec
from tests.helpers.fakes import INSTANCE_URL, SF_CREDENTIALS, FakeHttp, http_error


SOBJECTS = {
    "encoding": "UTF-8",
    "maxBatchSize": 200,
    "sobjects": [
        {"name": "Account", "label": "Account", "custom": False, "createable": True,
         "updateable": True, "deletable": True, "queryable": True, "urls": {"x": "y"}},
    ],
}


def _adapter(routes=None, **kw):
    http = FakeHttp(routes or {}, **kw)
    return SalesforceAdapter(SF_CREDENTIALS, http=http, cache_size=8), http


def test_discover_is_static():
    adapter, http = _adapter()
    info = adapter.discover()
    assert info.name == "Salesforce"
    assert info.version == "1.0.0"
    assert info.capabilities == ["resources", "tools"]
    assert http.calls == []


def test_descriptor_queries_are_idempotent():
    adapter, http = _adapter()
    assert adapter.list_tools() == adapter.list_tools()
    assert adapter.list_resources() == adapter.list_resources()
    assert [t.name for t in adapter.list_tools()] == ["query_records", "get_record", "describe_object"]
    assert [r.locator for r in adapter.list_resources()] == ["schema", "recent_items"]
    assert http.calls == []


def test_tool_input_schema_uses_wire_names():
    adapter, _ = _adapter()
    get_record = {t.name: t for t in adapter.list_tools()}["get_record"]
    schema = get_record.input_schema
    assert set(schema["required"]) == {"objectType", "recordId"}
    assert "fields" in schema["properties"]


def test_unknown_resource_and_tool_are_not_found_without_backend_calls():
    adapter, http = _adapter()
    with pytest.raises(NotFound):
        adapter.read_resource("nonexistent")
    with pytest.raises(NotFound):
        adapter.call_tool("nonexistent", {})
    assert http.calls == []


def test_invalid_parameters_are_rejected_before_login():
    adapter, http = _adapter()
    with pytest.raises(InvalidArgument):
        adapter.call_tool("get_record", {"objectType": "Account"})
    with pytest.raises(InvalidArgument):
        adapter.call_tool("query_records", {"soql": "SELECT Id FROM Account", "limit": "many"})
    assert http.calls == []


def test_read_schema_renders_sorted_json_and_logs_in_once():
    adapter, http = _adapter({"sobjects/": SOBJECTS, "recent/": [{"Id": "001", "Name": "Acme"}]})

    text = adapter.read_resource("schema")
    data = json.loads(text)
    assert data["sobjects"][0] == {
        "name": "Account", "label": "Account", "custom": False, "createable": True,
        "updateable": True, "deletable": True, "queryable": True,
    }
    assert text == json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)

    adapter.read_resource("recent_items")
    assert http.logins == 1
    assert [c[1] for c in http.gets] == [
        f"{INSTANCE_URL}/services/data/v59.0/sobjects/",
        f"{INSTANCE_URL}/services/data/v59.0/recent/",
    ]


def test_query_records_appends_limit():
    adapter, http = _adapter({"query/": {"totalSize": 1, "records": [{"Id": "1"}], "done": True}})
    out = adapter.call_tool("query_records", {"soql": "SELECT Id FROM Account", "limit": 5})
    assert out == {"totalSize": 1, "records": [{"Id": "1"}]}
    assert http.gets[-1][2] == {"q": "SELECT Id FROM Account LIMIT 5"}

    adapter.call_tool("query_records", {"soql": "SELECT Id FROM Account LIMIT 2", "limit": 5})
    assert http.gets[-1][2] == {"q": "SELECT Id FROM Account LIMIT 2"}


def test_get_record_with_fields():
    adapter, http = _adapter({"sobjects/Account/001xx": {"Id": "001xx", "Name": "Acme"}})
    out = adapter.call_tool("get_record", {"objectType": "Account", "recordId": "001xx", "fields": ["Id", "Name"]})
    assert out["Name"] == "Acme"
    assert http.gets[-1][2] == {"fields": "Id,Name"}


def test_describe_object_is_cached_per_type():
    adapter, http = _adapter({"sobjects/Account/describe/": {"name": "Account", "fields": []}})
    first = adapter.call_tool("describe_object", {"objectType": "Account"})
    second = adapter.call_tool("describe_object", {"objectType": "Account"})
    assert first == second
    assert len(http.gets) == 1


def test_upstream_error_carries_backend_message():
    err = http_error(400, [{"message": "unexpected token: FROMM", "errorCode": "MALFORMED_QUERY"}])
    adapter, _ = _adapter({"query/": err})
    with pytest.raises(UpstreamError) as ei:
        adapter.call_tool("query_records", {"soql": "SELECT Id FROMM Account"})
    assert "unexpected token: FROMM" in str(ei.value)


def test_authentication_failure_is_sticky_until_credentials_replaced():
    login_error = http_error(400, {"error": "invalid_grant", "error_description": "authentication failure"})
    adapter, http = _adapter({"recent/": []}, login_error=login_error)

    with pytest.raises(AuthenticationFailed) as ei:
        adapter.read_resource("recent_items")
    assert "authentication failure" in str(ei.value)

    with pytest.raises(AuthenticationFailed):
        adapter.read_resource("recent_items")
    assert http.logins == 1  # no retry

    http.login_error = None
    adapter.replace_credentials(SF_CREDENTIALS)
    assert adapter.read_resource("recent_items") == "[]"
    assert http.logins == 2


def test_incomplete_credentials_fail_authentication():
    http = FakeHttp()
    adapter = SalesforceAdapter({"username": "u"}, http=http)
    with pytest.raises(AuthenticationFailed) as ei:
        adapter.read_resource("schema")
    assert "clientId" in str(ei.value)
    assert http.calls == []


def test_add_and_remove_tool_extend_instance_only():
    class PingParams(BaseModel):
        target: str

    adapter, _ = _adapter()
    adapter.add_tool(ToolSpec("ping", "Ping", PingParams, lambda session, p: {"pong": p.target}))

    assert adapter.list_tools()[-1].name == "ping"
    assert adapter.call_tool("ping", {"target": "x"}) == {"pong": "x"}
    assert "ping" not in [t.name for t in SalesforceAdapter(http=FakeHttp()).list_tools()]

    with pytest.raises(InvalidArgument):
        adapter.add_tool(ToolSpec("ping", "Ping", PingParams, lambda session, p: None))

    adapter.remove_tool("ping")
    with pytest.raises(NotFound):
        adapter.call_tool("ping", {"target": "x"})
