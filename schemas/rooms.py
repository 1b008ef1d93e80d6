from typing import Optional, Union

from pydantic import BaseModel


class RoomSummary(BaseModel):
    document_id: str
    online_users_count: int


class RoomListResponse(BaseModel):
    rooms: list[RoomSummary]
    connections: int


class RoomDetailsResponse(BaseModel):
    document_id: str
    online_users_count: int
    is_active: bool
    has_snapshot: bool
    updated_at: Optional[Union[int, float, str]] = None
