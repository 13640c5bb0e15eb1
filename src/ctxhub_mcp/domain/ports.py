from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from .models import AdapterInfo, Connection, ResourceDescriptor, ToolDescriptor


@runtime_checkable
class CapabilityAdapter(Protocol):
    """
    The five-operation capability interface every backend connector implements.

    Descriptor queries are static and make no backend call. `read_resource` and
    `call_tool` raise NotFound for unknown locators / tool names before any
    backend contact.
    """

    def discover(self) -> AdapterInfo:
        ...

    def list_tools(self) -> List[ToolDescriptor]:
        ...

    def list_resources(self) -> List[ResourceDescriptor]:
        ...

    def read_resource(self, locator: str) -> str:
        ...

    def call_tool(self, name: str, parameters: Mapping[str, Any]) -> Any:
        ...


@runtime_checkable
class ConnectionStoragePort(Protocol):
    """
    Key-value persistence for connections, keyed by connection id.
    `values()` yields records in registration order.
    """

    def get(self, connection_id: str) -> Optional[Connection]:
        ...

    def put(self, connection: Connection) -> None:
        ...

    def delete(self, connection_id: str) -> bool:
        ...

    def values(self) -> Iterable[Connection]:
        ...
