"""
Redis-backed room store.
"""

import json
import logging
import time
from typing import List, Optional

import redis.asyncio as redis

from ..config import MESSAGE_HISTORY_LIMIT
from ..models.room import Message, Participant, Room
from .store import RoomStore

logger = logging.getLogger("watchparty.services.redis_store")

ROOM_META_KEY = "watchparty:room:meta:{room_id}"  # hash of json-encoded room fields
ROOM_PARTICIPANTS_KEY = "watchparty:room:participants:{room_id}"  # participant id -> json
ROOM_MESSAGES_KEY = "watchparty:room:messages:{room_id}"  # list of json messages, oldest first
PARTICIPANT_ROOM_KEY = "watchparty:participant:room"  # participant id -> room id
ROOM_ACTIVITY_KEY = "watchparty:rooms:activity"  # sorted set, score = last activity epoch


class RedisRoomStore(RoomStore):
    """Stores rooms as Redis hashes, messages as capped lists."""

    def __init__(self, client: redis.Redis):
        self.redis_client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisRoomStore":
        logger.info(f"Connecting room store to {url}")
        return cls(redis.Redis.from_url(url, decode_responses=True))

    async def ping(self) -> bool:
        return bool(await self.redis_client.ping())

    async def load_room(self, room_id: str) -> Optional[Room]:
        raw = await self.redis_client.hgetall(ROOM_META_KEY.format(room_id=room_id))
        if not raw:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        record = {k: json.loads(v) for k, v in raw.items()}

        raw_participants = await self.redis_client.hgetall(ROOM_PARTICIPANTS_KEY.format(room_id=room_id))
        participants = [Participant.from_dict(json.loads(v)) for v in raw_participants.values()]
        return Room.from_record(record, participants)

    async def save_room(self, room: Room) -> None:
        record = room.to_record()
        await self.redis_client.hset(
            ROOM_META_KEY.format(room_id=room.id),
            mapping={k: json.dumps(v) for k, v in record.items()},
        )
        await self.redis_client.zadd(ROOM_ACTIVITY_KEY, {room.id: record['lastActivityAt']})

    async def delete_room(self, room_id: str) -> None:
        participants_key = ROOM_PARTICIPANTS_KEY.format(room_id=room_id)
        participant_ids = await self.redis_client.hkeys(participants_key)
        if participant_ids:
            await self.redis_client.hdel(PARTICIPANT_ROOM_KEY, *participant_ids)
        await self.redis_client.delete(
            ROOM_META_KEY.format(room_id=room_id),
            participants_key,
            ROOM_MESSAGES_KEY.format(room_id=room_id),
        )
        await self.redis_client.zrem(ROOM_ACTIVITY_KEY, room_id)
        logger.debug(f"🗑️ Deleted room {room_id} from Redis")

    async def save_participant(self, room_id: str, participant: Participant) -> None:
        await self.redis_client.hset(
            ROOM_PARTICIPANTS_KEY.format(room_id=room_id),
            participant.id,
            json.dumps(participant.to_dict()),
        )
        await self.redis_client.hset(PARTICIPANT_ROOM_KEY, participant.id, room_id)

    async def remove_participant(self, participant_id: str) -> None:
        room_id = await self.redis_client.hget(PARTICIPANT_ROOM_KEY, participant_id)
        if room_id is None:
            return
        await self.redis_client.hdel(ROOM_PARTICIPANTS_KEY.format(room_id=room_id), participant_id)
        await self.redis_client.hdel(PARTICIPANT_ROOM_KEY, participant_id)

    async def save_message(self, room_id: str, message: Message) -> None:
        key = ROOM_MESSAGES_KEY.format(room_id=room_id)
        await self.redis_client.rpush(key, json.dumps(message.to_dict()))
        await self.redis_client.ltrim(key, -MESSAGE_HISTORY_LIMIT, -1)

    async def load_recent_messages(self, room_id: str, limit: int) -> List[Message]:
        if limit <= 0:
            return []
        raw = await self.redis_client.lrange(ROOM_MESSAGES_KEY.format(room_id=room_id), -limit, -1)
        return [Message.from_dict(json.loads(item)) for item in raw]

    async def sweep_inactive(self, idle_seconds: float) -> int:
        cutoff = time.time() - idle_seconds
        stale = await self.redis_client.zrangebyscore(ROOM_ACTIVITY_KEY, "-inf", cutoff)
        for room_id in stale:
            await self.delete_room(room_id)
        if stale:
            logger.info(f"🧹 Swept {len(stale)} inactive rooms from Redis")
        return len(stale)

    async def close(self) -> None:
        await self.redis_client.aclose()
