from fastapi import APIRouter, Request

from logging_config import get_logger
from schemas.rooms import RoomDetailsResponse, RoomListResponse, RoomSummary

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/", response_model=RoomListResponse)
async def list_rooms(request: Request):
    """Active rooms with their member counts. Rooms disappear once their last member leaves."""
    relay = request.app.state.relay
    rooms = await relay.room_registry.rooms()
    connections = await relay.connection_count()
    logger.info(f"Room listing requested: {len(rooms)} active rooms, {connections} connections")
    return RoomListResponse(
        rooms=[RoomSummary(document_id=doc_id, online_users_count=count) for doc_id, count in sorted(rooms.items())],
        connections=connections,
    )


@rooms_router.get("/{document_id}", response_model=RoomDetailsResponse)
async def get_room_details(document_id: str, request: Request):
    """
    Presence and snapshot metadata for one document.

    Unknown documents are not an error: they are reported as an inactive room
    without a snapshot. Ciphertext and nonce are never returned here.
    """
    relay = request.app.state.relay
    online_users_count = await relay.room_registry.count(document_id)
    snapshot = await relay.session_store.get(document_id)

    logger.info(f"Room details retrieved for {document_id}: {online_users_count} users online")

    return RoomDetailsResponse(
        document_id=document_id,
        online_users_count=online_users_count,
        is_active=online_users_count > 0,
        has_snapshot=snapshot is not None,
        updated_at=snapshot.updated_at if snapshot else None,
    )
