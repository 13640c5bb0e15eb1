"""
Shared HTTP client for backend adapters.

Centralizes timeouts, retries of idempotent calls and failure logging on top of
`requests`. Adapters receive an instance so tests can hand in a fake.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# Retries are only applied to idempotent methods.
DEFAULT_RETRY_STATUS = (429, 500, 502, 503, 504)


def error_message(exc: requests.RequestException) -> str:
    """
    Best human-readable reason for a failed call.

    Backends such as Salesforce put their own text in the JSON body, either as
    `[{"message": ..., "errorCode": ...}]` or as an OAuth style
    `{"error": ..., "error_description": ...}`. Falls back to the status line,
    or to the transport error when there is no response at all.
    """
    resp = getattr(exc, "response", None)
    if resp is None:
        return str(exc)
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, list) and body and isinstance(body[0], dict) and body[0].get("message"):
        return str(body[0]["message"])
    if isinstance(body, dict):
        msg = body.get("error_description") or body.get("message") or body.get("error")
        if msg:
            return str(msg)
    return f"HTTP {resp.status_code}"


def _default_timeout() -> tuple[float, float]:
    return (
        _env_float("CTXHUB_HTTP_CONNECT_TIMEOUT", 3.05),
        _env_float("CTXHUB_HTTP_READ_TIMEOUT", 20.0),
    )


@dataclass(frozen=True)
class HttpClientConfig:
    timeout: tuple[float, float] = field(default_factory=_default_timeout)
    retries: int = field(default_factory=lambda: _env_int("CTXHUB_HTTP_RETRIES", 3))
    backoff: float = field(default_factory=lambda: _env_float("CTXHUB_HTTP_BACKOFF", 0.4))
    retry_statuses: tuple[int, ...] = DEFAULT_RETRY_STATUS
    user_agent: str = field(default_factory=lambda: os.getenv("CTXHUB_HTTP_USER_AGENT", "context-hub/0.1"))


class HttpClient:
    """A small wrapper around `requests.Session` with sane defaults."""

    def __init__(self, *, config: HttpClientConfig | None = None, session: requests.Session | None = None) -> None:
        self.config = config or HttpClientConfig()
        self.session = session or requests.Session()
        self._configure_session(self.session, self.config)

    @staticmethod
    def _configure_session(session: requests.Session, config: HttpClientConfig) -> None:
        session.headers.setdefault("User-Agent", config.user_agent)
        if config.retries <= 0:
            return

        retry = Retry(
            total=config.retries,
            connect=config.retries,
            read=config.retries,
            status=config.retries,
            backoff_factor=config.backoff,
            status_forcelist=config.retry_statuses,
            allowed_methods=frozenset(["HEAD", "GET", "OPTIONS"]),
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        data: Any | None = None,
        timeout: tuple[float, float] | float | None = None,
        **kwargs: Any,
    ) -> Response:
        """Perform an HTTP request and raise for non-2xx responses."""
        t0 = time.perf_counter()
        try:
            resp = self.session.request(
                method=method,
                url=url,
                headers=dict(headers) if headers else None,
                params=dict(params) if params else None,
                data=data,
                timeout=timeout or self.config.timeout,
                **kwargs,
            )
            resp.raise_for_status()
            return resp
        except requests.RequestException as e:
            ms = int((time.perf_counter() - t0) * 1000)
            status = getattr(getattr(e, "response", None), "status_code", None)
            logger.warning(
                "HTTP %s %s failed (status=%s, ms=%s): %s",
                method.upper(),
                url,
                status,
                ms,
                error_message(e),
            )
            raise

    def get_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        timeout: tuple[float, float] | float | None = None,
    ) -> Any:
        return self.request("GET", url, headers=headers, params=params, timeout=timeout).json()

    def post_json(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, Any] | None = None,
        timeout: tuple[float, float] | float | None = None,
    ) -> Any:
        """POST a form-encoded body and decode the JSON response."""
        return self.request("POST", url, headers=headers, data=data, timeout=timeout).json()
