from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, List, Mapping, Optional

from ctxhub_common.errors import Forbidden, InvalidArgument, NotFound
from ctxhub_mcp.domain.models import Connection, ConnectionInfo
from ctxhub_mcp.domain.ports import ConnectionStoragePort
from ctxhub_mcp.storage import InMemoryConnectionStorage

log = logging.getLogger(__name__)


def _new_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex}"


class ConnectionStore:
    """
    Owns connection records: id -> (service type, owner, credentials).

    Every resolution names a requester and ownership is re-checked; callers
    are never trusted to have checked already. Credentials leave the store
    only through `resolve` / `find_for_owner`, for adapter construction.
    """

    def __init__(self, storage: Optional[ConnectionStoragePort] = None) -> None:
        self._storage = storage if storage is not None else InMemoryConnectionStorage()
        self._lock = threading.RLock()

    def register(self, owner_id: str, service_type: str, credentials: Mapping[str, Any]) -> str:
        owner = (owner_id or "").strip()
        st = (service_type or "").strip().lower()
        if not owner:
            raise InvalidArgument("owner_id is required")
        if not st:
            raise InvalidArgument("service_type is required")
        if not isinstance(credentials, Mapping):
            raise InvalidArgument("credentials must be an object")

        conn = Connection(id=_new_connection_id(), service_type=st, owner_id=owner, credentials=dict(credentials))
        with self._lock:
            self._storage.put(conn)
        log.info("Connection added: id=%s type=%s", conn.id, st)
        return conn.id

    def _lookup(self, connection_id: str) -> Connection:
        with self._lock:
            conn = self._storage.get(connection_id)
        if conn is None:
            raise NotFound("Connection not found", connection_id=connection_id)
        return conn

    def resolve(self, connection_id: str, requester_id: str) -> Connection:
        if not requester_id:
            raise InvalidArgument("requester_id is required", connection_id=connection_id)
        conn = self._lookup(connection_id)
        if conn.owner_id != requester_id:
            log.warning("Denied access to connection %s", connection_id)
            raise Forbidden("Access denied", connection_id=connection_id)
        return conn

    def find_for_owner(self, owner_id: str, service_type: str) -> Connection:
        st = (service_type or "").strip().lower()
        with self._lock:
            for conn in self._storage.values():
                if conn.owner_id == owner_id and conn.service_type == st:
                    return conn
        raise NotFound(f"No {st} connection registered", service=st)

    def list_by_owner(self, owner_id: str) -> List[ConnectionInfo]:
        with self._lock:
            return [c.info() for c in self._storage.values() if c.owner_id == owner_id]

    def delete(self, connection_id: str, requester_id: str) -> None:
        with self._lock:
            self.resolve(connection_id, requester_id=requester_id)
            self._storage.delete(connection_id)
        log.info("Connection deleted: id=%s", connection_id)

    def delete_owner(self, owner_id: str) -> int:
        """Cascade: drop every connection of an owner. Returns how many were removed."""
        with self._lock:
            ids = [c.id for c in self._storage.values() if c.owner_id == owner_id]
            for cid in ids:
                self._storage.delete(cid)
        if ids:
            log.info("Deleted %d connection(s) for owner", len(ids))
        return len(ids)
