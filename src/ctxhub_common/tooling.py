from __future__ import annotations

import functools
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from ctxhub_common.context import get_request_id, new_request_id, set_request_id
from ctxhub_common.errors import error_payload
from ctxhub_common.telemetry import DEFAULT_TELEMETRY_FILE, log_event

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared helpers for MCP tool handlers
# ---------------------------------------------------------------------------

_REDACTION_KEYS = {"credentials", "password", "client_secret", "clientsecret", "token", "access_token", "api_key"}


def sanitize_args_for_log(args: dict | None) -> dict:
    """Remove obvious secrets from args (telemetry layer also redacts)."""
    out: dict[str, Any] = {}
    for k, v in (args or {}).items():
        out[str(k)] = "***redacted***" if str(k).lower() in _REDACTION_KEYS else v
    return out


@dataclass(frozen=True)
class InstrumentConfig:
    kind: str
    name: str
    client_id: str
    telemetry_file: str = DEFAULT_TELEMETRY_FILE

    # correlation id behavior
    new_corr_id_per_call: bool = False

    # attach corr_id to returned dict for debugging
    attach_corr_id: bool = True


def instrument_sync_tool(cfg: InstrumentConfig):
    """Decorator for sync tools: correlation id, timing, telemetry, exceptions -> typed errors."""

    def decorator(fn: Callable[..., Any]):
        fn_sig = inspect.signature(fn)

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any):
            corr_id = get_request_id()
            if cfg.new_corr_id_per_call or not corr_id:
                corr_id = new_request_id()
                set_request_id(corr_id)

            t0 = time.perf_counter()
            bound = fn_sig.bind_partial(*args, **kwargs)
            args_for_log: dict[str, Any] = {"args": sanitize_args_for_log(dict(bound.arguments))}

            try:
                payload = fn(*args, **kwargs)
            except Exception as e:
                logger.warning("Tool %s failed: %s", cfg.name, e)
                payload = error_payload(e)

            ms = int((time.perf_counter() - t0) * 1000)
            ok = not (isinstance(payload, dict) and "error" in payload)
            if isinstance(payload, dict) and payload.get("error"):
                args_for_log["error"] = payload.get("error")

            log_event(
                cfg.kind,
                cfg.name,
                args_for_log,
                ok=ok,
                ms=ms,
                client_id=cfg.client_id,
                corr_id=corr_id,
                telemetry_file=cfg.telemetry_file,
            )

            if cfg.attach_corr_id and isinstance(payload, dict):
                payload.setdefault("corr_id", corr_id)
            return payload

        wrapper.__signature__ = fn_sig  # type: ignore[attr-defined]
        return wrapper

    return decorator
