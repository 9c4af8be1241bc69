"""
REST endpoints for clients that poll instead of holding a socket open.
"""

import logging
from typing import Optional, Union

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from ..config import ENVIRONMENT, MAX_PARTICIPANTS
from ..errors import RoomFull, RoomNotFound
from ..models.room import RoomSettings
from ..services.watch_party import WatchPartyService

logger = logging.getLogger("watchparty.api.rooms")

router = APIRouter(prefix="/api", tags=["rooms"])


class SettingsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sync_playback: bool = Field(True, alias="syncPlayback")
    allow_chat: bool = Field(True, alias="allowChat")
    max_participants: int = Field(MAX_PARTICIPANTS, alias="maxParticipants", ge=1)


class CreateRoomRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    anime: str = ""
    episode: Union[str, int] = ""
    episode_id: Optional[Union[str, int]] = Field(None, alias="episodeId")
    host_name: str = Field("", alias="hostName")
    host_id: Optional[str] = Field(None, alias="hostId")
    settings: Optional[SettingsPayload] = None


class MessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    user_name: str = Field("", alias="userName")
    user_id: Optional[str] = Field(None, alias="userId")


class PlaybackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_name: Optional[str] = Field(None, alias="userName")
    user_id: Optional[str] = Field(None, alias="userId")
    is_playing: Optional[bool] = Field(None, alias="isPlaying")
    current_time: Optional[float] = Field(None, alias="currentTime", ge=0)
    duration: Optional[float] = Field(None, ge=0)


class HostActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    requester_id: str = Field(..., alias="requesterId", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)


def get_service(request: Request) -> WatchPartyService:
    return request.app.state.service


def _room_not_found(room_id: str) -> HTTPException:
    logger.warning(f"❌ API request for non-existent room: {room_id}")
    return HTTPException(status_code=404, detail="Room not found")


@router.post("/rooms")
async def create_room(body: CreateRoomRequest, request: Request):
    """Create a new room with the caller as host."""
    name = body.name.strip()
    anime = body.anime.strip()
    episode = str(body.episode).strip()
    host_name = body.host_name.strip()

    if not name or not anime or not episode or not host_name:
        raise HTTPException(status_code=400, detail="Missing required fields: name, anime, episode, hostName")

    settings = RoomSettings(**body.settings.model_dump()) if body.settings else None
    episode_id = str(body.episode_id) if body.episode_id is not None else None

    room, host = get_service(request).create_room(
        name, anime, episode, host_name, settings=settings, episode_id=episode_id, host_id=body.host_id
    )

    return {
        "success": True,
        "room": {
            "id": room.id,
            "name": room.name,
            "anime": room.anime,
            "episode": room.episode,
            "episodeId": room.episode_id,
            "host": room.host,
            "hostId": host.id,
            "participantCount": room.participant_count,
            "settings": room.settings.to_dict(),
        },
    }


@router.get("/rooms")
async def list_rooms(request: Request):
    """List active rooms (development only)."""
    if ENVIRONMENT == "production":
        raise HTTPException(status_code=403, detail="Not available in production")
    return {"rooms": get_service(request).registry.list_rooms()}


@router.get("/stats")
async def get_stats(request: Request):
    """Get server statistics."""
    stats = get_service(request).registry.stats()
    logger.debug(f"📊 Server stats requested: {stats['total_rooms']} rooms, {stats['total_participants']} participants")
    return stats


@router.get("/room")
async def get_room(request: Request, room_id: Optional[str] = Query(None, alias="id")):
    """Get the full snapshot of a room."""
    if not room_id:
        raise HTTPException(status_code=400, detail="Room ID is required as query parameter ?id=")
    try:
        return await get_service(request).snapshot(room_id)
    except RoomNotFound:
        raise _room_not_found(room_id)


@router.post("/room/{room_id}/message")
async def add_message(room_id: str, body: MessageRequest, request: Request):
    """Append a chat message on behalf of a polling client."""
    content = body.content.strip()
    user_name = body.user_name.strip()
    if not content or not user_name:
        raise HTTPException(status_code=400, detail="Content and userName are required")

    try:
        message = await get_service(request).send_message(room_id, content, participant_id=body.user_id,
                                                          user_name=user_name)
    except RoomNotFound:
        raise _room_not_found(room_id)
    except RoomFull:
        raise HTTPException(status_code=403, detail="Room is full")

    if message is None:
        raise HTTPException(status_code=403, detail="Chat is disabled in this room")
    return {"success": True, "message": message.to_dict()}


@router.post("/room/{room_id}/playback")
async def update_playback(room_id: str, body: PlaybackRequest, request: Request):
    """Update playback state on behalf of a polling client."""
    user_name = (body.user_name or "").strip() or None
    if not user_name and not body.user_id:
        raise HTTPException(status_code=400, detail="userName or userId is required")

    changes = body.model_dump(include={"is_playing", "current_time", "duration"}, exclude_none=True)

    try:
        playback = await get_service(request).update_playback(room_id, changes, participant_id=body.user_id,
                                                              user_name=user_name)
    except RoomNotFound:
        raise _room_not_found(room_id)
    except RoomFull:
        raise HTTPException(status_code=403, detail="Room is full")

    if playback is None:
        raise HTTPException(status_code=403, detail="Playback update rejected")
    return {"success": True, "playbackState": playback.to_dict()}


@router.post("/room/{room_id}/kick")
async def kick_participant(room_id: str, body: HostActionRequest, request: Request):
    """Kick a participant (host only)."""
    try:
        kicked = await get_service(request).kick(room_id, body.requester_id, body.user_id)
    except RoomNotFound:
        raise _room_not_found(room_id)

    if kicked is None:
        raise HTTPException(status_code=403, detail="Only the host can kick participants in this room")
    return {"success": True, "userId": kicked.id}


@router.post("/room/{room_id}/transfer-host")
async def transfer_host(room_id: str, body: HostActionRequest, request: Request):
    """Transfer the host role (host only)."""
    try:
        new_host = await get_service(request).transfer_host(room_id, body.requester_id, body.user_id)
    except RoomNotFound:
        raise _room_not_found(room_id)

    if new_host is None:
        raise HTTPException(status_code=403, detail="Only the host can transfer host to a participant")
    return {"success": True, "host": {"id": new_host.id, "name": new_host.name}}
