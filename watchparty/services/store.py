"""
Persistence port for rooms, participants and chat messages.

The in-memory registry is authoritative while the process runs; a store only
lets rooms outlive a restart. Every method may raise, callers log and carry on.
"""

import abc
import copy
import logging
import time
from typing import Dict, List, Optional

from ..models.room import Message, Participant, Room

logger = logging.getLogger("watchparty.services.store")


class RoomStore(abc.ABC):
    """Abstract durable storage keyed by room id."""

    @abc.abstractmethod
    async def load_room(self, room_id: str) -> Optional[Room]:
        """Load a room with its participants (no messages), or None."""

    @abc.abstractmethod
    async def save_room(self, room: Room) -> None:
        """Upsert the room row."""

    @abc.abstractmethod
    async def delete_room(self, room_id: str) -> None:
        """Delete a room along with its participants and messages."""

    @abc.abstractmethod
    async def save_participant(self, room_id: str, participant: Participant) -> None:
        """Upsert a participant keyed by participant id."""

    @abc.abstractmethod
    async def remove_participant(self, participant_id: str) -> None:
        """Delete a participant."""

    @abc.abstractmethod
    async def save_message(self, room_id: str, message: Message) -> None:
        """Insert a chat message."""

    @abc.abstractmethod
    async def load_recent_messages(self, room_id: str, limit: int) -> List[Message]:
        """Most recent ``limit`` messages, oldest first."""

    @abc.abstractmethod
    async def sweep_inactive(self, idle_seconds: float) -> int:
        """Delete rooms idle longer than ``idle_seconds``. Returns the count removed."""

    async def close(self) -> None:
        """Release any connections held by the store."""


class InMemoryRoomStore(RoomStore):
    """Process-local store holding plain records.

    Keeps copies rather than live objects so a loaded room never aliases the
    registry's working copy.
    """

    def __init__(self):
        self.rooms: Dict[str, dict] = {}
        self.participants: Dict[str, dict] = {}
        self.participant_rooms: Dict[str, str] = {}
        self.messages: Dict[str, List[dict]] = {}

    async def load_room(self, room_id: str) -> Optional[Room]:
        record = self.rooms.get(room_id)
        if record is None:
            return None
        participants = [
            Participant.from_dict(data)
            for pid, data in self.participants.items()
            if self.participant_rooms.get(pid) == room_id
        ]
        return Room.from_record(copy.deepcopy(record), participants)

    async def save_room(self, room: Room) -> None:
        self.rooms[room.id] = room.to_record()

    async def delete_room(self, room_id: str) -> None:
        self.rooms.pop(room_id, None)
        self.messages.pop(room_id, None)
        for pid in [pid for pid, rid in self.participant_rooms.items() if rid == room_id]:
            self.participant_rooms.pop(pid, None)
            self.participants.pop(pid, None)
        logger.debug(f"🗑️ Deleted room {room_id} from memory store")

    async def save_participant(self, room_id: str, participant: Participant) -> None:
        self.participants[participant.id] = participant.to_dict()
        self.participant_rooms[participant.id] = room_id

    async def remove_participant(self, participant_id: str) -> None:
        self.participants.pop(participant_id, None)
        self.participant_rooms.pop(participant_id, None)

    async def save_message(self, room_id: str, message: Message) -> None:
        self.messages.setdefault(room_id, []).append(message.to_dict())

    async def load_recent_messages(self, room_id: str, limit: int) -> List[Message]:
        records = self.messages.get(room_id, [])
        return [Message.from_dict(data) for data in records[-limit:]] if limit > 0 else []

    async def sweep_inactive(self, idle_seconds: float) -> int:
        cutoff = time.time() - idle_seconds
        stale = [rid for rid, record in self.rooms.items() if record['lastActivityAt'] < cutoff]
        for room_id in stale:
            await self.delete_room(room_id)
        if stale:
            logger.info(f"🧹 Swept {len(stale)} inactive rooms from memory store")
        return len(stale)
