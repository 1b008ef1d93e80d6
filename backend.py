import asyncio
from dataclasses import dataclass
from numbers import Number
from typing import Dict, Optional, Set, Union

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionSnapshot:
    """Last encrypted document state received for one document id.

    ciphertext and nonce are opaque to the relay; updated_at is whatever the
    submitting client sent (or the relay's clock in epoch ms) and is never
    used to order writes.
    """

    ciphertext: str
    nonce: str
    updated_at: Union[int, float, str]


class SessionStore:
    def __init__(self):
        self._snapshots: Dict[str, SessionSnapshot] = {}
        self._lock = asyncio.Lock()
        logger.info("Initializing in-memory SessionStore")

    async def get(self, document_id: str) -> Optional[SessionSnapshot]:
        async with self._lock:
            snapshot = self._snapshots.get(document_id)
        if snapshot is None:
            logger.debug(f"No snapshot stored for document {document_id}")
        return snapshot

    async def put(self, document_id: str, snapshot: SessionSnapshot) -> None:
        """Unconditionally replace the snapshot (last-received-wins)."""
        async with self._lock:
            previous = self._snapshots.get(document_id)
            self._snapshots[document_id] = snapshot
        if (
            previous is not None
            and isinstance(snapshot.updated_at, Number)
            and isinstance(previous.updated_at, Number)
            and snapshot.updated_at < previous.updated_at
        ):
            logger.debug(
                f"Snapshot for document {document_id} replaced by an older write "
                f"({snapshot.updated_at} < {previous.updated_at})"
            )
        logger.debug(f"Stored snapshot for document {document_id}, ciphertext length: {len(snapshot.ciphertext)}")

    async def document_ids(self) -> Set[str]:
        async with self._lock:
            return set(self._snapshots)

    async def clear(self) -> None:
        async with self._lock:
            dropped = len(self._snapshots)
            self._snapshots.clear()
        logger.info(f"SessionStore cleared, dropped {dropped} snapshots")


class RoomRegistry:
    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()
        logger.info("Initializing in-memory RoomRegistry")

    async def join(self, document_id: str, connection_id: str) -> int:
        """Add a connection to a room, creating the room if needed. Returns the member count."""
        async with self._lock:
            members = self._rooms.setdefault(document_id, set())
            added = connection_id not in members
            members.add(connection_id)
            count = len(members)
        if added:
            logger.debug(f"Connection {connection_id} added to room {document_id}")
        else:
            logger.debug(f"Connection {connection_id} already in room {document_id}")
        return count

    async def leave(self, document_id: str, connection_id: str) -> int:
        """Remove a connection from a room. Empty rooms are deleted and report 0."""
        async with self._lock:
            members = self._rooms.get(document_id)
            if members is None:
                return 0
            members.discard(connection_id)
            count = len(members)
            if count == 0:
                del self._rooms[document_id]
        logger.debug(f"Connection {connection_id} removed from room {document_id}, {count} remaining")
        if count == 0:
            logger.info(f"Cleaned up empty room: {document_id}")
        return count

    async def members(self, document_id: str) -> Set[str]:
        async with self._lock:
            return set(self._rooms.get(document_id, ()))

    async def members_except(self, document_id: str, connection_id: str) -> Set[str]:
        async with self._lock:
            members = set(self._rooms.get(document_id, ()))
        members.discard(connection_id)
        return members

    async def count(self, document_id: str) -> int:
        async with self._lock:
            return len(self._rooms.get(document_id, ()))

    async def rooms(self) -> Dict[str, int]:
        """Member count per active room."""
        async with self._lock:
            return {document_id: len(members) for document_id, members in self._rooms.items()}

    async def clear(self) -> None:
        async with self._lock:
            dropped = len(self._rooms)
            self._rooms.clear()
        logger.info(f"RoomRegistry cleared, dropped {dropped} rooms")
