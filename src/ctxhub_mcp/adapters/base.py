from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, FrozenSet, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from ctxhub_common.errors import AuthenticationFailed, InvalidArgument, NotFound
from ctxhub_config.settings import describe_cache_size
from ctxhub_mcp.cache import LRUCache
from ctxhub_mcp.domain.models import AdapterInfo, ResourceDescriptor, ToolDescriptor

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any, BaseModel], Any]


@dataclass(frozen=True)
class ToolSpec:
    """
    A tool entry of the capability descriptor table.

    `handler` is either the name of an adapter method or a callable; both are
    invoked as handler(session, params) with validated params.
    """

    name: str
    description: str
    params: Type[BaseModel]
    handler: Union[str, ToolHandler]

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_schema=self.params.model_json_schema(by_alias=True),
        )


@dataclass(frozen=True)
class ResourceSpec:
    name: str
    description: str
    locator: str
    reader: str  # adapter method taking the session

    def descriptor(self) -> ResourceDescriptor:
        return ResourceDescriptor(name=self.name, description=self.description, locator=self.locator)


def render(data: Any) -> str:
    """Deterministic text rendering of a fetched structure (stable key order)."""
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False, default=str)


class BaseAdapter:
    """
    Shared machinery for capability adapters.

    Subclasses declare TOOLS / RESOURCES tables and implement `_open_session`.
    The backend session is opened lazily on first backend use and reused for the
    instance lifetime. A failed opening is sticky: every later backend
    operation raises AuthenticationFailed until `replace_credentials` is called.
    """

    NAME: ClassVar[str] = ""
    VERSION: ClassVar[str] = "1.0.0"
    CAPABILITIES: ClassVar[FrozenSet[str]] = frozenset({"resources", "tools"})
    TOOLS: ClassVar[Tuple[ToolSpec, ...]] = ()
    RESOURCES: ClassVar[Tuple[ResourceSpec, ...]] = ()

    def __init__(self, credentials: Optional[Mapping[str, Any]] = None, *, cache_size: Optional[int] = None) -> None:
        self._credentials: Dict[str, Any] = dict(credentials or {})
        self._tools: Dict[str, ToolSpec] = {t.name: t for t in self.TOOLS}
        self._tool_descriptors: Dict[str, ToolDescriptor] = {t.name: t.descriptor() for t in self.TOOLS}
        self._resources: Dict[str, ResourceSpec] = {r.locator: r for r in self.RESOURCES}
        self._session: Any = None
        self._auth_failure: Optional[str] = None
        self._session_lock = threading.Lock()
        self._metadata: LRUCache[str, Any] = LRUCache(describe_cache_size() if cache_size is None else cache_size)

    # ---- descriptors (static, no backend call) ----------------------------
    def discover(self) -> AdapterInfo:
        return AdapterInfo(name=self.NAME, version=self.VERSION, capabilities=sorted(self.CAPABILITIES))

    def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tool_descriptors.values())

    def list_resources(self) -> List[ResourceDescriptor]:
        return [r.descriptor() for r in self._resources.values()]

    def add_tool(self, spec: ToolSpec) -> None:
        """Extend this instance's tool table; the class table stays untouched."""
        if spec.name in self._tools:
            raise InvalidArgument(f"Tool already registered: {spec.name}", tool=spec.name)
        self._tools[spec.name] = spec
        self._tool_descriptors[spec.name] = spec.descriptor()

    def remove_tool(self, name: str) -> None:
        if name not in self._tools:
            raise NotFound(f"Tool not found: {name}", tool=name)
        del self._tools[name]
        del self._tool_descriptors[name]

    # ---- backend operations -----------------------------------------------
    def read_resource(self, locator: str) -> str:
        spec = self._resources.get(locator)
        if spec is None:
            raise NotFound(f"Unknown resource: {locator}", resource=locator)
        session = self._ensure_session()
        return render(getattr(self, spec.reader)(session))

    def call_tool(self, name: str, parameters: Optional[Mapping[str, Any]] = None) -> Any:
        spec = self._tools.get(name)
        if spec is None:
            raise NotFound(f"Tool not found: {name}", tool=name)
        if parameters is not None and not isinstance(parameters, Mapping):
            raise InvalidArgument(f"Invalid parameters for {name}: expected an object", tool=name)
        try:
            params = spec.params.model_validate(dict(parameters or {}))
        except ValidationError as e:
            raise InvalidArgument(f"Invalid parameters for {name}: {e}", tool=name) from e

        handler = getattr(self, spec.handler) if isinstance(spec.handler, str) else spec.handler
        session = self._ensure_session()
        return handler(session, params)

    # ---- session ------------------------------------------------------------
    def replace_credentials(self, credentials: Mapping[str, Any]) -> None:
        with self._session_lock:
            self._credentials = dict(credentials)
            self._session = None
            self._auth_failure = None
            self._metadata.clear()

    def _ensure_session(self) -> Any:
        with self._session_lock:
            if self._auth_failure is not None:
                raise AuthenticationFailed(self._auth_failure)
            if self._session is None:
                try:
                    self._session = self._open_session()
                except AuthenticationFailed as e:
                    logger.error("Failed to connect to %s: %s", self.NAME, e)
                    self._auth_failure = e.message
                    raise
                logger.info("Opened %s session", self.NAME)
            return self._session

    def _open_session(self) -> Any:
        raise NotImplementedError
