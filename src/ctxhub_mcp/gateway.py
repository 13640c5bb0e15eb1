import logging
import os
from functools import lru_cache
from typing import Any

from mcp.server.fastmcp import FastMCP

from ctxhub_common.errors import UnsupportedService, typed_error
from ctxhub_common.telemetry import telemetry_recent
from ctxhub_common.tooling import InstrumentConfig, instrument_sync_tool
from ctxhub_config.settings import init_runtime, load_env_once
from ctxhub_mcp.aggregator import ContextAggregator
from ctxhub_mcp.connection_store import ConnectionStore
from ctxhub_mcp.registry import default_registry
from ctxhub_mcp.router import MessageRouter
from ctxhub_mcp.storage import build_storage

logger = logging.getLogger(__name__)

GATEWAY_CLIENT_ID = os.getenv("MCP_CLIENT_ID", "ctxhub_gateway")

mcp = FastMCP(
    name="Context-Hub-MCP",
    instructions=(
        "Attach backend service credentials and query them through one capability protocol, "
        "or pull a combined context document across services."
    ),
)

registry = default_registry()


# Built on first use so that settings from .env / CTXHUB_ENV_FILE are in place.
@lru_cache(maxsize=1)
def get_store() -> ConnectionStore:
    load_env_once()
    return ConnectionStore(build_storage())


@lru_cache(maxsize=1)
def get_router() -> MessageRouter:
    return MessageRouter(get_store(), registry)


@lru_cache(maxsize=1)
def get_aggregator() -> ContextAggregator:
    return ContextAggregator(get_store(), registry)


def reset_wiring() -> None:
    """Drop the cached store, router and aggregator (tests, config reloads)."""
    for accessor in (get_store, get_router, get_aggregator):
        accessor.cache_clear()


def _instrument(name: str):
    return instrument_sync_tool(
        InstrumentConfig(kind="tool", name=name, client_id=GATEWAY_CLIENT_ID, new_corr_id_per_call=True)
    )


@mcp.tool(name="ctxhub.healthz.v1")
@_instrument("ctxhub.healthz.v1")
def healthz() -> dict:
    return {"ok": True}


@mcp.tool(name="ctxhub.services.list.v1")
@_instrument("ctxhub.services.list.v1")
def services_list() -> dict:
    return {"services": registry.service_types()}


@mcp.tool(name="ctxhub.connections.register.v1")
@_instrument("ctxhub.connections.register.v1")
def connections_register(owner_id: str, service_type: str, credentials: dict[str, Any]) -> dict:
    """Store credentials for a backend service. Returns the connection id, never the credentials."""
    if not registry.supports(service_type):
        raise UnsupportedService(f"Unsupported service type: {service_type}", service=service_type)
    connection_id = get_store().register(owner_id, service_type, credentials)
    return {"connection_id": connection_id, "service_type": service_type.strip().lower()}


@mcp.tool(name="ctxhub.connections.list.v1")
@_instrument("ctxhub.connections.list.v1")
def connections_list(owner_id: str) -> dict:
    return {"connections": [c.model_dump(by_alias=True) for c in get_store().list_by_owner(owner_id)]}


@mcp.tool(name="ctxhub.connections.delete.v1")
@_instrument("ctxhub.connections.delete.v1")
def connections_delete(connection_id: str, owner_id: str) -> dict:
    get_store().delete(connection_id, requester_id=owner_id)
    return {"ok": True, "connection_id": connection_id}


@mcp.tool(name="ctxhub.message.v1")
@_instrument("ctxhub.message.v1")
def message(connection_id: str, owner_id: str, envelope: dict[str, Any]) -> dict:
    """
    Route one protocol envelope ({type, id, ...}) to the adapter bound to a connection.
    Failures come back as {"type": "error", "id": ..., "error": ...}.
    """
    return get_router().handle(envelope, connection_id=connection_id, requester_id=owner_id)


@mcp.tool(name="ctxhub.context.build.v1")
@_instrument("ctxhub.context.build.v1")
def context_build(
    owner_id: str,
    services: list[str],
    max_tokens: int | None = None,
    include_metadata: bool = False,
) -> dict:
    if not services:
        return typed_error("invalid_argument", "services must not be empty")
    return get_aggregator().build_context(
        owner_id,
        services,
        {"maxTokens": max_tokens, "includeMetadata": include_metadata},
    )


# payload is already redacted on write
@mcp.tool(name="ctxhub.telemetry.recent.v1")
@_instrument("ctxhub.telemetry.recent.v1")
def telemetry_recent_tool(n: int = 50) -> dict:
    return telemetry_recent(n=n)


def main() -> None:
    # Entry points (console_scripts) call main() directly, so we must perform
    # runtime initialization here (dotenv + logging).
    init_runtime()
    transport = os.environ.get("MCP_TRANSPORT", "stdio")
    logger.info("Starting %s (transport=%s)", mcp.name, transport)
    mcp.run(transport=transport)


if __name__ == "__main__":
    main()
