"""
Room coordination shared by the Socket.IO handlers and the REST API.

Every operation resolves the room, takes the room's lock, applies the
mutation, broadcasts the outcome and queues the store writes. Broadcasts are
sent while the lock is held so clients see events in mutation order.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from ..errors import RoomFull, RoomNotFound
from ..models.room import Message, Participant, PlaybackState, Room, RoomSettings, generate_id
from .room_registry import RoomRegistry

logger = logging.getLogger("watchparty.services.watch_party")


@dataclass
class JoinResult:
    room: Room
    participant: Participant
    rejoined: bool
    previous_sid: Optional[str] = None


class WatchPartyService:
    """Applies room operations and broadcasts their events."""

    def __init__(self, sio, registry: RoomRegistry):
        self.sio = sio
        self.registry = registry

    @asynccontextmanager
    async def _locked_room(self, room_id: str) -> AsyncIterator[Room]:
        # A room can be evicted while we wait for its lock; look it up again.
        for _ in range(3):
            room = await self.registry.get_or_load(room_id)
            if room is None:
                break
            async with room.lock:
                if not room.closed:
                    yield room
                    return
        raise RoomNotFound(room_id)

    # Rooms

    def create_room(self, name: str, anime: str, episode: str, host_name: str,
                    settings: Optional[RoomSettings] = None, episode_id: Optional[str] = None,
                    host_id: Optional[str] = None) -> Tuple[Room, Participant]:
        return self.registry.create_room(name, anime, episode, host_name, settings=settings,
                                         episode_id=episode_id, host_id=host_id)

    async def snapshot(self, room_id: str) -> dict:
        room = await self.registry.get_or_load(room_id)
        if room is None or room.closed:
            raise RoomNotFound(room_id)
        return room.snapshot()

    # Membership

    async def check_joinable(self, room_id: str, participant_id: str, vacating: Optional[str] = None) -> Room:
        """Raise RoomNotFound or RoomFull if a join would be refused, without changing anything.

        ``vacating`` names an identity that leaves this room before the join.
        """
        room = await self.registry.get_or_load(room_id)
        if room is None or room.closed:
            raise RoomNotFound(room_id)
        if not room.can_admit(participant_id) and vacating not in room.participants:
            raise RoomFull(room.id, room.settings.max_participants)
        return room

    async def join(self, room_id: str, participant_id: str, name: str, sid: Optional[str] = None) -> JoinResult:
        """Join (or rejoin) a room. Raises RoomNotFound or RoomFull."""
        async with self._locked_room(room_id) as room:
            existing = room.participants.get(participant_id)
            previous_sid = existing.sid if existing is not None else None

            participant, rejoined = room.join(participant_id, name, sid=sid)

            if previous_sid and previous_sid != sid:
                await self.sio.leave_room(previous_sid, room.id)
            else:
                previous_sid = None

            if sid:
                await self.sio.enter_room(sid, room.id)
                await self.sio.emit('room-joined', {'room': room.snapshot()}, room=sid)

            if not rejoined:
                await self.sio.emit('participant-joined', {'participant': participant.to_dict()},
                                    room=room.id, skip_sid=sid)

            self.registry.touch(room)
            self.registry.save_participant(room, participant)
            return JoinResult(room, participant, rejoined, previous_sid)

    async def leave(self, room_id: str, participant_id: str, sid: Optional[str] = None) -> Optional[Participant]:
        """Remove a participant. With ``sid`` set, only if that connection still owns the identity."""
        room = self.registry.get(room_id)
        if room is None:
            return None

        async with room.lock:
            if room.closed:
                return None
            participant = room.participants.get(participant_id)
            if participant is None or (sid is not None and participant.sid != sid):
                return None

            removed, new_host = room.leave(participant_id)
            if sid:
                await self.sio.leave_room(sid, room.id)
            await self._announce_departure(room, removed, new_host, 'participant-left')
            return removed

    async def kick(self, room_id: str, requester_id: str, target_id: str) -> Optional[Participant]:
        """Host-only removal of a participant. Returns the kicked participant."""
        async with self._locked_room(room_id) as room:
            kicked, new_host = room.kick(requester_id, target_id)
            if kicked is None:
                return None

            if kicked.sid:
                await self.sio.emit('kicked', {'roomId': room.id}, room=kicked.sid)
                await self.sio.leave_room(kicked.sid, room.id)
            await self._announce_departure(room, kicked, new_host, 'participant-kicked')
            return kicked

    async def _announce_departure(self, room: Room, removed: Participant,
                                  new_host: Optional[Participant], event: str) -> None:
        if new_host is not None:
            await self.sio.emit('host-changed', {'newHost': room.host}, room=room.id)
        if not room.is_empty:
            await self.sio.emit(event, {'userId': removed.id}, room=room.id)

        self.registry.remove_participant(room, removed)
        if new_host is not None:
            self.registry.save_participant(room, new_host)
        if not self.registry.evict_if_empty(room):
            self.registry.touch(room)

    async def transfer_host(self, room_id: str, requester_id: str, target_id: str) -> Optional[Participant]:
        """Hand the host role over. Returns the new host."""
        async with self._locked_room(room_id) as room:
            new_host = room.transfer_host(requester_id, target_id)
            if new_host is None:
                return None

            await self.sio.emit('host-changed', {'newHost': room.host}, room=room.id)
            self.registry.touch(room)
            self.registry.save_participant(room, room.participants[requester_id])
            self.registry.save_participant(room, new_host)
            return new_host

    # Chat and playback

    async def send_message(self, room_id: str, content: str, participant_id: Optional[str] = None,
                           user_name: Optional[str] = None) -> Optional[Message]:
        """Post a chat message.

        With ``user_name`` set the author is looked up by id or name and
        seated in the room if absent, for clients without a socket.
        """
        async with self._locked_room(room_id) as room:
            if user_name is not None and room.settings.allow_chat:
                participant_id = (await self._resolve_actor(room, participant_id, user_name)).id

            message = room.post_message(participant_id, content)
            if message is None:
                return None

            await self.sio.emit('new-message', message.to_dict(), room=room.id)
            self.registry.touch(room)
            self.registry.save_message(room, message)
            return message

    async def update_playback(self, room_id: str, changes: Dict[str, Any], participant_id: Optional[str] = None,
                              user_name: Optional[str] = None, sid: Optional[str] = None) -> Optional[PlaybackState]:
        """Merge a playback update and relay it to everyone except the sender's connection."""
        async with self._locked_room(room_id) as room:
            if user_name is not None and room.settings.sync_playback:
                participant_id = (await self._resolve_actor(room, participant_id, user_name)).id

            playback = room.update_playback(participant_id, changes)
            if playback is None:
                return None

            await self.sio.emit('playback-updated', {**playback.to_dict(), 'updatedBy': participant_id},
                                room=room.id, skip_sid=sid)
            self.registry.touch(room)
            return playback

    async def _resolve_actor(self, room: Room, user_id: Optional[str], user_name: str) -> Participant:
        participant = room.find_participant(user_id, user_name)
        if participant is not None:
            return participant

        participant, _ = room.join(user_id or generate_id(), user_name)
        logger.info(f"👤 Seated {user_name} ({participant.id}) in room {room.id} without a socket")
        await self.sio.emit('participant-joined', {'participant': participant.to_dict()}, room=room.id)
        self.registry.save_participant(room, participant)
        return participant
