import asyncio
import json

from watchparty.models.room import Room
from watchparty.services.redis_store import (
    PARTICIPANT_ROOM_KEY,
    ROOM_ACTIVITY_KEY,
    ROOM_META_KEY,
    RedisRoomStore,
)


def make_room() -> Room:
    room = Room("room-1", "Movie Night", "ShowX", "Ep1")
    room.add_host("alice", "Alice")
    room.join("bob", "Bob", sid="sid-b")
    room.update_playback("alice", {"is_playing": True, "current_time": 30.0})
    return room


def test_round_trip_room_with_participants(fake_redis):
    async def scenario():
        store = RedisRoomStore(fake_redis)
        room = make_room()

        await store.save_room(room)
        for participant in room.participants.values():
            await store.save_participant(room.id, participant)

        loaded = await store.load_room(room.id)

        assert loaded.name == "Movie Night"
        assert loaded.host == {"id": "alice", "name": "Alice"}
        assert set(loaded.participants) == {"alice", "bob"}
        assert loaded.participants["bob"].sid is None
        assert loaded.playback.is_playing is True
        assert loaded.playback.current_time == 30.0
        assert json.loads(fake_redis.hashes[ROOM_META_KEY.format(room_id=room.id)]["name"]) == "Movie Night"
        assert room.id in fake_redis.zsets[ROOM_ACTIVITY_KEY]

    asyncio.run(scenario())


def test_load_missing_room(fake_redis):
    assert asyncio.run(RedisRoomStore(fake_redis).load_room("missing")) is None


def test_messages_are_capped_and_chronological(fake_redis):
    async def scenario():
        store = RedisRoomStore(fake_redis)
        room = make_room()

        for i in range(120):
            await store.save_message(room.id, room.post_message("bob", f"message {i}"))

        recent = await store.load_recent_messages(room.id, 50)

        assert len(recent) == 50
        assert recent[0].content == "message 70"
        assert recent[-1].content == "message 119"
        assert recent[-1].user_name == "Bob"
        assert await store.load_recent_messages(room.id, 0) == []

    asyncio.run(scenario())


def test_remove_participant_and_delete_room(fake_redis):
    async def scenario():
        store = RedisRoomStore(fake_redis)
        room = make_room()
        await store.save_room(room)
        for participant in room.participants.values():
            await store.save_participant(room.id, participant)
        await store.save_message(room.id, room.post_message("alice", "hi"))

        await store.remove_participant("bob")
        await store.remove_participant("unknown")
        loaded = await store.load_room(room.id)
        assert set(loaded.participants) == {"alice"}

        await store.delete_room(room.id)

        assert await store.load_room(room.id) is None
        assert await store.load_recent_messages(room.id, 50) == []
        assert fake_redis.hashes.get(PARTICIPANT_ROOM_KEY, {}) == {}
        assert room.id not in fake_redis.zsets[ROOM_ACTIVITY_KEY]

    asyncio.run(scenario())


def test_sweep_inactive(fake_redis):
    async def scenario():
        store = RedisRoomStore(fake_redis)
        stale = make_room()
        stale.last_activity -= 3600
        fresh = Room("room-2", "Late Show", "ShowY", "Ep3")
        fresh.add_host("carol", "Carol")
        await store.save_room(stale)
        await store.save_room(fresh)
        await store.save_participant(fresh.id, fresh.participants["carol"])

        removed = await store.sweep_inactive(1800)

        assert removed == 1
        assert await store.load_room(stale.id) is None
        assert (await store.load_room(fresh.id)).host["name"] == "Carol"
        await store.close()
        assert fake_redis.closed

    asyncio.run(scenario())
