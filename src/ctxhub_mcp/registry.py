from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ctxhub_common.errors import UnsupportedService
from ctxhub_mcp.adapters.salesforce import SalesforceAdapter
from ctxhub_mcp.domain.ports import CapabilityAdapter

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[Mapping[str, Any]], CapabilityAdapter]


class ServiceType(str, Enum):
    """Closed set of backend service tags a connection can be registered for."""

    CRM = "crm"
    SALESFORCE = "salesforce"


def parse_service_type(value: Union[str, ServiceType]) -> ServiceType:
    if isinstance(value, ServiceType):
        return value
    norm = (value or "").strip().lower() if isinstance(value, str) else ""
    try:
        return ServiceType(norm)
    except ValueError:
        raise UnsupportedService(f"Unsupported service type: {value}", service=value) from None


class AdapterRegistry:
    """
    Maps service types to adapter factories.
    The single extension point for adding services.
    """

    def __init__(self, factories: Optional[Mapping[Union[str, ServiceType], AdapterFactory]] = None) -> None:
        self._factories: Dict[ServiceType, AdapterFactory] = {}
        for service_type, factory in (factories or {}).items():
            self.register(service_type, factory)

    def register(self, service_type: Union[str, ServiceType], factory: AdapterFactory) -> None:
        self._factories[parse_service_type(service_type)] = factory

    def supports(self, service_type: Union[str, ServiceType]) -> bool:
        try:
            return parse_service_type(service_type) in self._factories
        except UnsupportedService:
            return False

    def service_types(self) -> List[str]:
        return [st.value for st in self._factories]

    def create(self, service_type: Union[str, ServiceType], credentials: Mapping[str, Any]) -> CapabilityAdapter:
        st = parse_service_type(service_type)
        factory = self._factories.get(st)
        if factory is None:
            raise UnsupportedService(f"No adapter registered for service type: {st.value}", service=st.value)
        logger.debug("Creating adapter for %s", st.value)
        return factory(credentials)


_DEFAULT_FACTORIES: Dict[ServiceType, AdapterFactory] = {
    ServiceType.CRM: SalesforceAdapter,
    ServiceType.SALESFORCE: SalesforceAdapter,
}

_missing = set(ServiceType) - set(_DEFAULT_FACTORIES)
if _missing:
    raise RuntimeError(f"Service types without an adapter factory: {sorted(m.value for m in _missing)}")


def default_registry() -> AdapterRegistry:
    return AdapterRegistry(_DEFAULT_FACTORIES)
