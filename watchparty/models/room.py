"""
Room models and data structures for the Watch Party server.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..config import MAX_PARTICIPANTS, MESSAGE_HISTORY_LIMIT, SNAPSHOT_MESSAGE_LIMIT
from ..errors import RoomFull

logger = logging.getLogger("watchparty.models.room")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id() -> str:
    """Generate a globally unique identifier."""
    return str(uuid.uuid4())


@dataclass
class PlaybackState:
    """Shared description of where the group is in the episode."""
    is_playing: bool = False
    current_time: float = 0.0
    duration: float = 0.0
    last_updated: int = field(default_factory=now_ms)

    FIELDS = ('is_playing', 'current_time', 'duration')

    def to_dict(self) -> dict:
        return {
            'isPlaying': self.is_playing,
            'currentTime': self.current_time,
            'duration': self.duration,
            'lastUpdated': self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaybackState":
        return cls(
            is_playing=bool(data.get('isPlaying', False)),
            current_time=float(data.get('currentTime', 0.0)),
            duration=float(data.get('duration', 0.0)),
            last_updated=int(data.get('lastUpdated') or now_ms()),
        )


@dataclass(frozen=True)
class RoomSettings:
    """Per-room settings, fixed when the room is created."""
    sync_playback: bool = True
    allow_chat: bool = True
    max_participants: int = MAX_PARTICIPANTS

    def to_dict(self) -> dict:
        return {
            'syncPlayback': self.sync_playback,
            'allowChat': self.allow_chat,
            'maxParticipants': self.max_participants,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RoomSettings":
        data = data or {}
        return cls(
            sync_playback=bool(data.get('syncPlayback', True)),
            allow_chat=bool(data.get('allowChat', True)),
            max_participants=int(data.get('maxParticipants', MAX_PARTICIPANTS)),
        )


@dataclass
class Message:
    """Represents a chat message in a room."""
    user_id: str
    user_name: str
    content: str
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'userId': self.user_id,
            'userName': self.user_name,
            'content': self.content,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data['id'],
            user_id=data['userId'],
            user_name=data['userName'],
            content=data['content'],
            timestamp=data['timestamp'],
        )


@dataclass
class Participant:
    """Represents a participant in a room.

    ``id`` is the stable identity; ``sid`` is the socket connection currently
    bound to it, or None for participants that only use the REST surface.
    """
    id: str
    name: str
    is_host: bool = False
    sid: Optional[str] = None
    joined_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'isHost': self.is_host,
            'joinedAt': int(self.joined_at * 1000),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Participant":
        joined_at = data.get('joinedAt')
        return cls(
            id=data['id'],
            name=data['name'],
            is_host=bool(data.get('isHost', False)),
            joined_at=joined_at / 1000 if joined_at else time.time(),
        )


class Room:
    """A watch party room and every operation that mutates it.

    All mutating methods are synchronous so each one runs to completion
    without yielding to the event loop. Callers that also broadcast the result
    hold ``lock`` across mutation and broadcast.
    """

    def __init__(self, room_id: str, name: str, anime: str, episode: str,
                 episode_id: Optional[str] = None, settings: Optional[RoomSettings] = None,
                 created_at: Optional[str] = None):
        self.id = room_id
        self.name = name
        self.anime = anime
        self.episode = episode
        self.episode_id = episode_id or episode
        self.settings = settings or RoomSettings()
        self.host_id: Optional[str] = None
        self.participants: Dict[str, Participant] = {}
        self.messages: List[Message] = []
        self.playback = PlaybackState()
        self.created_at = created_at or now_iso()
        self.last_activity = time.monotonic()
        self.closed = False
        self.lock = asyncio.Lock()

    # Host reference

    @property
    def host(self) -> Optional[dict]:
        """Id and name of the current host, or None for an empty room."""
        participant = self.participants.get(self.host_id) if self.host_id else None
        if participant is None:
            return None
        return {'id': participant.id, 'name': participant.name}

    def _set_host(self, participant_id: str) -> None:
        for participant in self.participants.values():
            participant.is_host = participant.id == participant_id
        self.host_id = participant_id

    def _reassign_host(self) -> Optional[Participant]:
        if not self.participants:
            self.host_id = None
            return None
        new_host = min(self.participants.values(), key=lambda p: p.joined_at)
        self._set_host(new_host.id)
        logger.info(f"👑 New host in room {self.id}: {new_host.name}")
        return new_host

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_activity

    # Membership

    def add_host(self, participant_id: str, name: str) -> Participant:
        """Seat the room creator as host. Only valid on an empty room."""
        participant = Participant(id=participant_id, name=name, is_host=True)
        self.participants[participant_id] = participant
        self.host_id = participant_id
        self.touch()
        return participant

    def can_admit(self, participant_id: str) -> bool:
        """Whether a join for this identity would succeed."""
        return (participant_id in self.participants
                or len(self.participants) < self.settings.max_participants)

    def join(self, participant_id: str, name: str, sid: Optional[str] = None) -> Tuple[Participant, bool]:
        """Add a participant. Returns (participant, rejoined).

        An identity that is already present is rebound to the new connection
        instead of being added twice. Raises RoomFull when at capacity.
        """
        existing = self.participants.get(participant_id)
        if existing is not None:
            existing.sid = sid
            existing.name = name
            self.touch()
            logger.info(f"🔄 {name} ({participant_id}) rejoined room {self.id}")
            return existing, True

        if len(self.participants) >= self.settings.max_participants:
            logger.warning(f"Room {self.id} is full ({self.settings.max_participants} participants)")
            raise RoomFull(self.id, self.settings.max_participants)

        participant = Participant(id=participant_id, name=name, sid=sid)
        self.participants[participant_id] = participant
        if self.host is None:
            self._set_host(participant_id)
        self.touch()

        logger.info(f"👤 {name} ({participant_id}) joined room {self.id}")
        return participant, False

    def leave(self, participant_id: str) -> Tuple[Optional[Participant], Optional[Participant]]:
        """Remove a participant. Returns (removed, new_host)."""
        participant = self.participants.pop(participant_id, None)
        if participant is None:
            return None, None

        new_host = None
        if participant.is_host or participant_id == self.host_id:
            new_host = self._reassign_host()
        self.touch()

        logger.info(f"👋 {participant.name} ({participant_id}) left room {self.id}")
        if self.is_empty:
            logger.info(f"🏠 Room {self.id} is now empty")
        return participant, new_host

    def kick(self, requester_id: str, target_id: str) -> Tuple[Optional[Participant], Optional[Participant]]:
        """Host-only removal. Returns (kicked, new_host); (None, None) when declined."""
        requester = self.participants.get(requester_id)
        if requester is None or not requester.is_host or target_id not in self.participants:
            return None, None

        kicked, new_host = self.leave(target_id)
        logger.info(f"🚫 {requester.name} kicked {kicked.name} from room {self.id}")
        return kicked, new_host

    def transfer_host(self, requester_id: str, target_id: str) -> Optional[Participant]:
        """Hand the host role to another participant. Returns the new host."""
        requester = self.participants.get(requester_id)
        target = self.participants.get(target_id)
        if requester is None or not requester.is_host or target is None or target is requester:
            return None

        self._set_host(target_id)
        self.touch()
        logger.info(f"👑 {requester.name} transferred host to {target.name} in room {self.id}")
        return target

    # Chat and playback

    def post_message(self, author_id: str, content: str) -> Optional[Message]:
        """Append a chat message from a current participant."""
        if not self.settings.allow_chat:
            return None
        author = self.participants.get(author_id)
        if author is None:
            return None

        message = Message(user_id=author.id, user_name=author.name, content=content)
        self.messages.append(message)
        if len(self.messages) > MESSAGE_HISTORY_LIMIT:
            del self.messages[:-MESSAGE_HISTORY_LIMIT]
        self.touch()

        logger.debug(f"💬 Message in room {self.id}: {author.name}: {content}")
        return message

    def update_playback(self, requester_id: str, changes: Dict[str, Any]) -> Optional[PlaybackState]:
        """Merge a partial playback update, last writer wins."""
        if not self.settings.sync_playback or requester_id not in self.participants:
            return None

        merged = {name: getattr(self.playback, name) for name in PlaybackState.FIELDS}
        merged.update({k: v for k, v in changes.items() if k in PlaybackState.FIELDS and v is not None})
        self.playback = PlaybackState(**merged)
        self.touch()

        logger.debug(f"▶️ Playback in room {self.id}: {self.playback}")
        return self.playback

    # Queries

    def find_participant(self, user_id: Optional[str] = None, name: Optional[str] = None) -> Optional[Participant]:
        if user_id and user_id in self.participants:
            return self.participants[user_id]
        if name:
            for participant in self.participants.values():
                if participant.name == name:
                    return participant
        return None

    def check_invariants(self) -> None:
        hosts = [p for p in self.participants.values() if p.is_host]
        if self.participants:
            assert self.host_id in self.participants, f"host {self.host_id} not in room {self.id}"
            assert [p.id for p in hosts] == [self.host_id], f"room {self.id} hosts: {hosts}"
        else:
            assert self.host_id is None and not hosts

    def snapshot(self, message_limit: int = SNAPSHOT_MESSAGE_LIMIT) -> dict:
        """Full observable state of the room."""
        messages = self.messages[-message_limit:] if message_limit > 0 else []
        return {
            'id': self.id,
            'name': self.name,
            'anime': self.anime,
            'episode': self.episode,
            'episodeId': self.episode_id,
            'host': self.host,
            'participants': [p.to_dict() for p in self.participants.values()],
            'messages': [m.to_dict() for m in messages],
            'playbackState': self.playback.to_dict(),
            'settings': self.settings.to_dict(),
            'created': self.created_at,
        }

    def summary(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'host': self.host,
            'participants': self.participant_count,
            'anime': self.anime,
            'episode': self.episode,
            'created': self.created_at,
            'idleSeconds': round(self.idle_for(), 1),
        }

    # Store records

    def to_record(self) -> dict:
        """Serializable room row, without participants and messages."""
        host = self.host or {}
        return {
            'id': self.id,
            'name': self.name,
            'anime': self.anime,
            'episode': self.episode,
            'episodeId': self.episode_id,
            'hostId': host.get('id'),
            'hostName': host.get('name'),
            'settings': self.settings.to_dict(),
            'playbackState': self.playback.to_dict(),
            'created': self.created_at,
            'lastActivityAt': time.time() - self.idle_for(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any], participants: List[Participant],
                    messages: Optional[List[Message]] = None) -> "Room":
        room = cls(
            room_id=record['id'],
            name=record['name'],
            anime=record['anime'],
            episode=record['episode'],
            episode_id=record.get('episodeId'),
            settings=RoomSettings.from_dict(record.get('settings')),
            created_at=record.get('created'),
        )
        if record.get('playbackState'):
            room.playback = PlaybackState.from_dict(record['playbackState'])
        for participant in participants:
            participant.sid = None
            room.participants[participant.id] = participant
        room.messages = list(messages or [])[-MESSAGE_HISTORY_LIMIT:]

        host_id = record.get('hostId')
        if host_id in room.participants:
            room._set_host(host_id)
        else:
            room._reassign_host()
        return room

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def is_empty(self) -> bool:
        return len(self.participants) == 0
