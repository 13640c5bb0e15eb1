from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _find_repo_root(start: Path) -> Optional[Path]:
    """
    Walk upward until we find pyproject.toml or .git.
    """
    start = start.resolve()
    for p in (start, *start.parents):
        if (p / "pyproject.toml").exists() or (p / ".git").exists():
            return p
    return None


@lru_cache(maxsize=1)
def repo_root() -> Path:
    """Best-effort repository root discovery.

    Order of precedence:
      1) CTXHUB_REPO_ROOT (explicit override)
      2) walk upward from current working directory
      3) walk upward from this module file's directory
    """
    explicit = os.getenv("CTXHUB_REPO_ROOT")
    if explicit:
        p = Path(explicit).expanduser().resolve()
        if not p.exists() or not p.is_dir():
            raise RuntimeError(f"CTXHUB_REPO_ROOT does not exist or is not a directory: {p}")
        return p

    cwd = Path.cwd().resolve()
    root = _find_repo_root(cwd)
    if root:
        return root

    here_dir = Path(__file__).resolve().parent
    root = _find_repo_root(here_dir)
    if root:
        return root

    # Fallback: typical layout (repo/src/ctxhub_config/settings.py)
    if len(here_dir.parents) >= 2:
        return here_dir.parents[1]

    return cwd


@lru_cache(maxsize=1)
def load_env_once() -> Optional[Path]:
    """
    Load dotenv exactly once. Precedence:
      1) CTXHUB_ENV_FILE (explicit path)
      2) repo-root/.env
      3) repo-root/config/.env
    """
    explicit = os.getenv("CTXHUB_ENV_FILE")
    candidates = []

    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.append(repo_root() / ".env")
    candidates.append(repo_root() / "config" / ".env")

    for p in candidates:
        p = p.resolve()
        if p.exists() and p.is_file():
            # Do NOT override already-set environment variables
            load_dotenv(dotenv_path=str(p), override=False)
            return p

    return None


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def telemetry_dir() -> Path:
    """
    Default telemetry dir. Override with CTXHUB_TELEMETRY_DIR.
    """
    p = os.getenv("CTXHUB_TELEMETRY_DIR")
    if p:
        return Path(p).expanduser().resolve()
    return (repo_root() / "artifacts" / "telemetry").resolve()


def telemetry_disabled() -> bool:
    return _env_flag("CTXHUB_DISABLE_TELEMETRY")


def storage_path() -> Optional[Path]:
    """
    SQLite file backing the connection store. Unset means in-memory storage.
    """
    p = os.getenv("CTXHUB_STORAGE_PATH")
    if not p:
        return None
    path = Path(p).expanduser()
    return path if path.is_absolute() else (repo_root() / path).resolve()


def describe_cache_size() -> int:
    """Capacity of each adapter's object metadata cache (0 disables the bound)."""
    return max(_env_int("CTXHUB_DESCRIBE_CACHE_SIZE", 256), 0)


def aggregator_max_workers() -> int:
    """Services built concurrently by the context aggregator (1 = sequential)."""
    return max(_env_int("CTXHUB_AGGREGATOR_MAX_WORKERS", 1), 1)


def salesforce_login_url() -> str:
    return os.getenv("CTXHUB_SALESFORCE_LOGIN_URL", "https://login.salesforce.com").rstrip("/")


def salesforce_api_version() -> str:
    return os.getenv("CTXHUB_SALESFORCE_API_VERSION", "59.0").strip().lstrip("v")


def configure_logging() -> None:
    """
    Configure logging explicitly. No import-time side effects.
    Idempotent: if logging is already configured, do nothing.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    level_name = os.getenv("CTXHUB_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = os.getenv(
        "CTXHUB_LOG_FORMAT",
        "%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logging.basicConfig(level=level, format=fmt)


def init_runtime(*, configure_logs: bool = True, load_env: bool = True) -> None:
    """
    Call this from entrypoints only (servers, scripts).
    """
    if load_env:
        load_env_once()
    if configure_logs:
        configure_logging()
