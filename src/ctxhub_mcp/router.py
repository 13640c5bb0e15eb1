from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from ctxhub_common.errors import ContextHubError, MalformedMessage
from ctxhub_common.telemetry import log_event
from ctxhub_mcp.connection_store import ConnectionStore
from ctxhub_mcp.domain.models import MessageType, RequestEnvelope
from ctxhub_mcp.domain.ports import CapabilityAdapter
from ctxhub_mcp.registry import AdapterRegistry

logger = logging.getLogger(__name__)


def error_envelope(message_id: Any, exc: BaseException) -> Dict[str, Any]:
    code = exc.code if isinstance(exc, ContextHubError) else "internal"
    return {"type": "error", "id": message_id, "error": str(exc), "code": code}


def _validate(message: Any) -> RequestEnvelope:
    if not isinstance(message, Mapping):
        raise MalformedMessage("Message must be an object")
    try:
        return RequestEnvelope.model_validate(dict(message))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or 'message'}: {err.get('msg')}" for err in e.errors()
        )
        raise MalformedMessage(f"Malformed message: {problems}") from e


class MessageRouter:
    """
    Single-connection protocol endpoint.

    received -> validated -> dispatched -> completed | failed. Each adapter
    operation is attempted once; every failure comes back as an `error`
    envelope carrying the request id, never as an exception.
    """

    def __init__(self, store: ConnectionStore, registry: AdapterRegistry) -> None:
        self.store = store
        self.registry = registry

    def handle(self, message: Any, *, connection_id: str, requester_id: str) -> Dict[str, Any]:
        t0 = time.perf_counter()
        message_id = message.get("id") if isinstance(message, Mapping) else None
        kind = message.get("type") if isinstance(message, Mapping) else None

        try:
            envelope = _validate(message)
            logger.debug("Message %s validated (type=%s)", message_id, envelope.type.value)
            adapter = self._bind(connection_id, requester_id)
            response = self._dispatch(adapter, envelope)
            ok = True
        except Exception as e:
            if isinstance(e, ContextHubError):
                logger.info("Message %s failed: %s (%s)", message_id, e, e.code)
            else:
                logger.exception("Unexpected error handling message %s", message_id)
            response = error_envelope(message_id, e)
            ok = False

        log_event(
            "message",
            str(kind),
            {"connection_id": connection_id, "id": message_id, "code": response.get("code")},
            ok=ok,
            ms=int((time.perf_counter() - t0) * 1000),
            client_id=requester_id,
        )
        return response

    def _bind(self, connection_id: str, requester_id: str) -> CapabilityAdapter:
        conn = self.store.resolve(connection_id, requester_id=requester_id)
        return self.registry.create(conn.service_type, conn.credentials)

    def _dispatch(self, adapter: CapabilityAdapter, env: RequestEnvelope) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": env.type.response_type, "id": env.id}

        if env.type is MessageType.DISCOVER:
            out.update(adapter.discover().model_dump())
        elif env.type is MessageType.LIST_RESOURCES:
            out["resources"] = [r.model_dump() for r in adapter.list_resources()]
        elif env.type is MessageType.READ_RESOURCE:
            out["content"] = adapter.read_resource(env.resource)  # type: ignore[arg-type]
        elif env.type is MessageType.LIST_TOOLS:
            out["tools"] = [t.model_dump(by_alias=True) for t in adapter.list_tools()]
        elif env.type is MessageType.CALL_TOOL:
            out["result"] = adapter.call_tool(env.tool, env.parameters)  # type: ignore[arg-type]

        return out
