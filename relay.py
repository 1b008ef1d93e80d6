"""Broadcast relay: applies client operations to the stores and fans out notifications.

The relay never inspects ciphertext. Every send is fire-and-forget: a failed
delivery is logged per target and never rolls back a store mutation.
"""
import asyncio
import time
from typing import Dict, Iterable, Optional, Protocol

from pydantic import BaseModel

from backend import RoomRegistry, SessionSnapshot, SessionStore
from logging_config import get_logger
from schemas.messages import (
    CurrentDocumentMessage,
    EditorChangeBroadcast,
    EditorChangeMessage,
    UserCountMessage,
    UserJoinedMessage,
    UserLeftMessage,
)

logger = get_logger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class Connection(Protocol):
    connection_id: str
    current_room: Optional[str]

    async def send(self, message: dict) -> None: ...


class BroadcastRelay:
    def __init__(self, session_store: SessionStore, room_registry: RoomRegistry):
        self.session_store = session_store
        self.room_registry = room_registry
        # connection_id -> live connection, used to resolve broadcast targets
        self._connections: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def connect(self, connection: Connection) -> None:
        async with self._lock:
            self._connections[connection.connection_id] = connection
            total = len(self._connections)
        logger.info(f"New client connected: {connection.connection_id} ({total} connections)")

    async def connection_count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def join_room(self, connection: Connection, document_id: str) -> int:
        """Join a document room and return its member count.

        A connection belongs to at most one room: joining a different room
        leaves the previous one first. Rejoining the current room re-sends the
        snapshot and the count without a second user-joined notification.
        """
        connection_id = connection.connection_id
        previous = connection.current_room
        if previous is not None and previous != document_id:
            logger.info(f"Connection {connection_id} switching from room {previous} to {document_id}")
            await self._leave_room(connection, previous)
        already_member = previous == document_id

        await self.room_registry.join(document_id, connection_id)
        connection.current_room = document_id
        logger.info(f"Connection {connection_id} joined room {document_id}")

        snapshot = await self.session_store.get(document_id)
        if snapshot is not None:
            await self._deliver(connection, CurrentDocumentMessage.from_snapshot(snapshot))
            logger.debug(f"Sent current document state to {connection_id}")

        if not already_member:
            others = await self.room_registry.members_except(document_id, connection_id)
            await self._fan_out(others, UserJoinedMessage(origin_id=connection_id))

        # Count the membership at broadcast time; other joins may have landed meanwhile
        members = await self.room_registry.members(document_id)
        count = len(members)
        await self._fan_out(members, UserCountMessage(count=count))
        logger.info(f"Room {document_id} now has {count} users")
        return count

    async def request_document(self, connection: Connection, document_id: str) -> bool:
        snapshot = await self.session_store.get(document_id)
        if snapshot is None:
            logger.info(f"No content available for document {document_id}")
            return False
        await self._deliver(connection, CurrentDocumentMessage.from_snapshot(snapshot))
        logger.debug(f"Sent document on request to {connection.connection_id}")
        return True

    async def submit_update(self, connection: Connection, update: EditorChangeMessage) -> int:
        """Store the update as the document's snapshot and relay it to every other member.

        Returns the number of peers the update was delivered to.
        """
        document_id = update.document_id
        origin_id = update.origin_id or connection.connection_id
        # Missing, null, 0 and "" all fall back to the relay clock
        timestamp = update.timestamp or now_ms()

        if connection.current_room != document_id:
            logger.debug(f"Connection {connection.connection_id} submitting to {document_id} without having joined it")

        logger.debug(
            f"Encrypted editor change in {document_id} from {origin_id}, content length: {len(update.ciphertext)}"
        )
        await self.session_store.put(
            document_id,
            SessionSnapshot(ciphertext=update.ciphertext, nonce=update.nonce, updated_at=timestamp),
        )

        targets = await self.room_registry.members_except(document_id, connection.connection_id)
        return await self._fan_out(
            targets,
            EditorChangeBroadcast(
                ciphertext=update.ciphertext,
                nonce=update.nonce,
                origin_id=origin_id,
                timestamp=timestamp,
            ),
        )

    async def heartbeat(self, connection: Connection) -> None:
        logger.debug(f"Heartbeat from {connection.connection_id}")

    async def disconnect(self, connection: Connection) -> None:
        async with self._lock:
            self._connections.pop(connection.connection_id, None)
        logger.info(f"Client disconnected: {connection.connection_id}")
        if connection.current_room is not None:
            await self._leave_room(connection, connection.current_room)

    async def _leave_room(self, connection: Connection, document_id: str) -> int:
        connection_id = connection.connection_id
        count = await self.room_registry.leave(document_id, connection_id)
        connection.current_room = None
        if count == 0:
            # Snapshot is kept so a later joiner still receives the last state
            return count

        remaining = await self.room_registry.members(document_id)
        await self._fan_out(remaining, UserLeftMessage(origin_id=connection_id))
        remaining = await self.room_registry.members(document_id)
        count = len(remaining)
        if count:
            await self._fan_out(remaining, UserCountMessage(count=count))
        logger.info(f"Room {document_id} now has {count} users")
        return count

    async def _deliver(self, connection: Connection, message: BaseModel) -> bool:
        try:
            await connection.send(message.model_dump())
            return True
        except Exception as e:
            logger.warning(f"Error sending {message.type} to connection {connection.connection_id}: {e}")
            return False

    async def _fan_out(self, target_ids: Iterable[str], message: BaseModel) -> int:
        """Send one message to each target connection concurrently; returns the number delivered."""
        async with self._lock:
            targets = [self._connections[cid] for cid in target_ids if cid in self._connections]
        if not targets:
            return 0

        payload = message.model_dump()
        results = await asyncio.gather(*(target.send(payload) for target in targets), return_exceptions=True)

        delivered = 0
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(f"Error sending {message.type} to connection {target.connection_id}: {result}")
            else:
                delivered += 1
        logger.debug(f"Broadcasted {message.type} to {delivered}/{len(targets)} connections")
        return delivered
