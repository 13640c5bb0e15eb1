from __future__ import annotations

import datetime as _dt
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from ctxhub_common.errors import InvalidArgument, UnsupportedService
from ctxhub_common.telemetry import log_event
from ctxhub_config.settings import aggregator_max_workers
from ctxhub_mcp.connection_store import ConnectionStore
from ctxhub_mcp.domain.models import ContextOptions, ContextSection
from ctxhub_mcp.registry import AdapterRegistry

logger = logging.getLogger(__name__)

# Rough estimate of characters per token used for the budget cut.
CHARS_PER_TOKEN = 4


def _utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ServiceBlock:
    """Everything gathered for one requested service, in adapter resource order."""

    service: str
    sections: List[ContextSection] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def header(self) -> str:
        return self.service.upper()

    def render(self) -> str:
        parts = [f"\n=== {self.header} ===\n\n"]
        for s in self.sections:
            parts.append(f"--- {self.header}/{s.resource_name} ---\n{s.content}\n\n")
        if self.error is not None:
            parts.append(f"--- {self.header}/error ---\nError getting context for {self.service}: {self.error}\n\n")
        return "".join(parts)


def _parse_options(options: Union[ContextOptions, Mapping[str, Any], None]) -> ContextOptions:
    if options is None:
        return ContextOptions()
    if isinstance(options, ContextOptions):
        return options
    try:
        return ContextOptions.model_validate(dict(options))
    except (ValidationError, TypeError, ValueError) as e:
        raise InvalidArgument(f"Invalid context options: {e}") from e


def truncate(text: str, max_tokens: Optional[int]) -> str:
    """Hard cut to max_tokens * 4 characters; may split a section."""
    if not max_tokens:
        return text
    return text[: max_tokens * CHARS_PER_TOKEN]


class ContextAggregator:
    """
    Builds one context document out of several services.

    Services are rendered in the caller's order whatever the scheduling. A
    failure in one service becomes an error section of that service and never
    aborts the others.
    """

    def __init__(
        self,
        store: ConnectionStore,
        registry: AdapterRegistry,
        *,
        max_workers: Optional[int] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.max_workers = aggregator_max_workers() if max_workers is None else max(int(max_workers), 1)

    def _collect(self, owner_id: str, service: str) -> ServiceBlock:
        block = ServiceBlock(service=service)
        try:
            if not self.registry.supports(service):
                raise UnsupportedService(f"Unsupported service type: {service}", service=service)
            conn = self.store.find_for_owner(owner_id, service)
            # ownership is re-checked even though the lookup was owner-scoped
            conn = self.store.resolve(conn.id, requester_id=owner_id)
            adapter = self.registry.create(service, conn.credentials)

            for resource in adapter.list_resources():
                content = adapter.read_resource(resource.locator)
                block.sections.append(
                    ContextSection(
                        service_type=service,
                        resource_name=resource.name,
                        content=content,
                        generated_at=_utc_now_iso(),
                        byte_length=len(content.encode("utf-8")),
                    )
                )
        except Exception as e:
            logger.error("Error getting context for service %s: %s", service, e)
            block.error = str(e) or e.__class__.__name__
        return block

    def collect(self, owner_id: str, services: Sequence[str]) -> List[ServiceBlock]:
        """Per-service blocks, in the order of `services`."""
        names = [str(s).strip() for s in services]
        if self.max_workers > 1 and len(names) > 1:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(names))) as pool:
                # map() yields in submission order
                return list(pool.map(lambda s: self._collect(owner_id, s), names))
        return [self._collect(owner_id, s) for s in names]

    def build_context(
        self,
        owner_id: str,
        services: Sequence[str],
        options: Union[ContextOptions, Mapping[str, Any], None] = None,
    ) -> Dict[str, Any]:
        if isinstance(services, (str, bytes)) or not isinstance(services, Sequence):
            raise InvalidArgument("services must be a list of service types")
        opts = _parse_options(options)

        t0 = time.perf_counter()
        blocks = self.collect(owner_id, services)
        context = truncate("".join(b.render() for b in blocks), opts.max_tokens)

        result: Dict[str, Any] = {"context": context}
        if opts.include_metadata:
            metadata: Dict[str, Dict[str, Any]] = {}
            for b in blocks:
                if not b.sections:
                    continue
                per_service = metadata.setdefault(b.service, {})
                for s in b.sections:
                    per_service[s.resource_name] = {"timestamp": s.generated_at, "byteLength": s.byte_length}
            result["metadata"] = metadata

        log_event(
            "context",
            "build_context",
            {
                "services": [b.service for b in blocks],
                "failed": [b.service for b in blocks if b.error is not None],
                "max_tokens": opts.max_tokens,
                "chars": len(context),
            },
            ok=True,
            ms=int((time.perf_counter() - t0) * 1000),
            client_id=owner_id,
        )
        return result
