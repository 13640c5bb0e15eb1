import pytest

from ctxhub_common.errors import UnsupportedService
from ctxhub_mcp.adapters import SalesforceAdapter
from ctxhub_mcp.registry import AdapterRegistry, ServiceType, default_registry, parse_service_type
from tests.helpers.fakes import FakeAdapter


def test_default_registry_covers_every_service_type():
    reg = default_registry()
    assert sorted(reg.service_types()) == sorted(st.value for st in ServiceType)
    assert isinstance(reg.create("crm", {}), SalesforceAdapter)
    assert isinstance(reg.create(" Salesforce ", {}), SalesforceAdapter)


def test_unknown_tag_rejected_at_boundary():
    reg = default_registry()
    assert reg.supports("hubspot") is False
    with pytest.raises(UnsupportedService):
        reg.create("hubspot", {})
    with pytest.raises(UnsupportedService):
        reg.register("hubspot", lambda creds: FakeAdapter("hubspot", {}))


def test_known_tag_without_factory_is_unsupported():
    reg = AdapterRegistry({"crm": lambda creds: FakeAdapter("crm", {})})
    assert reg.supports("crm")
    assert not reg.supports("salesforce")
    with pytest.raises(UnsupportedService):
        reg.create("salesforce", {})


def test_factory_receives_credentials():
    reg = AdapterRegistry({ServiceType.CRM: lambda creds: FakeAdapter("crm", {}, credentials=creds)})
    adapter = reg.create("crm", {"token": "t"})
    assert adapter.credentials == {"token": "t"}


def test_parse_service_type_normalizes():
    assert parse_service_type("CRM") is ServiceType.CRM
    assert parse_service_type(ServiceType.SALESFORCE) is ServiceType.SALESFORCE
