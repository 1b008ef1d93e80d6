import asyncio
import json
import uuid
from typing import Optional

from fastapi import WebSocket
from pydantic import ValidationError

from logging_config import get_logger
from relay import BroadcastRelay
from schemas.messages import (
    EditorChangeMessage,
    HeartbeatMessage,
    JoinRoomMessage,
    RequestDocumentMessage,
    parse_client_message,
)

logger = get_logger(__name__)

# Close code sent when a client stays silent past the idle timeout
IDLE_CLOSE_CODE = 1001
# Close code sent when the receive loop fails unexpectedly
ERROR_CLOSE_CODE = 1011


class ConnectionHandler:
    """One live websocket client: owns its connection id and current room."""

    def __init__(self, websocket: WebSocket, relay: BroadcastRelay, idle_timeout: Optional[float] = None):
        self.websocket = websocket
        self.relay = relay
        self.idle_timeout = idle_timeout or None
        self.connection_id = str(uuid.uuid4())
        self.current_room: Optional[str] = None
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(message))

    async def run(self) -> None:
        """Accept the socket and serve it until the client leaves or goes idle."""
        await self.websocket.accept()
        await self.relay.connect(self)
        message_count = 0
        # None once the client has closed the socket itself
        close_code: Optional[int] = ERROR_CLOSE_CODE
        try:
            while True:
                try:
                    message = await asyncio.wait_for(self.websocket.receive(), timeout=self.idle_timeout)
                except asyncio.TimeoutError:
                    logger.info(f"Connection {self.connection_id} idle for {self.idle_timeout}s, closing")
                    close_code = IDLE_CLOSE_CODE
                    break
                except Exception as e:
                    logger.error(f"Error receiving message from connection {self.connection_id}: {e}", exc_info=True)
                    break

                if message["type"] == "websocket.disconnect":
                    logger.info(f"WebSocket disconnected normally for connection {self.connection_id}")
                    close_code = None
                    break

                message_count += 1
                logger.debug(f"Received message #{message_count} from connection {self.connection_id}")
                data = message.get("text")
                if data is None:
                    logger.warning(f"Dropping binary frame from connection {self.connection_id}")
                    continue
                await self.handle_text(data)
        finally:
            if close_code is not None:
                await self._close(close_code)
            await self.relay.disconnect(self)

    async def handle_text(self, data: str) -> None:
        """Decode, validate and dispatch one frame. Bad frames are logged and dropped."""
        try:
            raw = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Dropping non-JSON frame from connection {self.connection_id}")
            return

        try:
            message = parse_client_message(raw)
        except ValidationError as e:
            kind = raw.get("type", "unknown") if isinstance(raw, dict) else "unknown"
            logger.warning(
                f"Dropping invalid {kind} message from connection {self.connection_id}: "
                f"{e.error_count()} validation errors"
            )
            logger.debug(f"Validation errors for {self.connection_id}: {e.errors()}")
            return

        try:
            await self.dispatch(message)
        except Exception as e:
            logger.error(f"Error handling {message.type} from connection {self.connection_id}: {e}", exc_info=True)

    async def dispatch(self, message) -> None:
        if isinstance(message, JoinRoomMessage):
            await self.relay.join_room(self, message.document_id)
        elif isinstance(message, RequestDocumentMessage):
            await self.relay.request_document(self, message.document_id)
        elif isinstance(message, EditorChangeMessage):
            await self.relay.submit_update(self, message)
        elif isinstance(message, HeartbeatMessage):
            await self.relay.heartbeat(self)

    async def _close(self, code: int) -> None:
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Error closing WebSocket for {self.connection_id}: {e}")
