from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

import pytest

from watchparty.handlers.socket_events import SocketEventHandler
from watchparty.services.room_registry import RoomRegistry
from watchparty.services.watch_party import WatchPartyService


@dataclass
class Emitted:
    event: str
    data: Any
    room: Optional[str]
    skip_sid: Optional[str]
    recipients: Set[str]


class RecordingServer:
    """Stands in for socketio.AsyncServer and remembers who got what."""

    def __init__(self):
        self.handlers: Dict[str, Any] = {}
        self.groups: Dict[str, Set[str]] = defaultdict(set)
        self.emitted: List[Emitted] = []

    def on(self, event):
        def register(handler):
            self.handlers[event] = handler
            return handler
        return register

    async def emit(self, event, data=None, room=None, skip_sid=None, **kwargs):
        if room in self.groups and self.groups[room]:
            recipients = set(self.groups[room]) - {skip_sid}
        else:
            recipients = {room} - {skip_sid}
        self.emitted.append(Emitted(event, data, room, skip_sid, recipients))

    async def enter_room(self, sid, room, namespace=None):
        self.groups[room].add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.groups[room].discard(sid)

    def events_for(self, sid: str) -> List[tuple]:
        return [(e.event, e.data) for e in self.emitted if sid in e.recipients]

    def names(self, sid: Optional[str] = None) -> List[str]:
        if sid is None:
            return [e.event for e in self.emitted]
        return [event for event, _ in self.events_for(sid)]

    def clear(self):
        self.emitted.clear()


class Stack:
    def __init__(self, sio: RecordingServer, store=None, room_timeout: float = 1800):
        self.sio = sio
        self.registry = RoomRegistry(store=store, room_timeout=room_timeout)
        self.service = WatchPartyService(sio, self.registry)
        self.handler = SocketEventHandler(sio, self.service)

    async def connect_and_join(self, sid: str, room_id: str, user_name: str, user_id: Optional[str] = None):
        await self.handler.handle_connect(sid, {})
        payload = {"roomId": room_id, "userName": user_name}
        if user_id:
            payload["userId"] = user_id
        await self.handler.handle_join_room(sid, payload)

    async def close(self):
        await self.registry.close()


@pytest.fixture
def sio():
    return RecordingServer()


@pytest.fixture
def make_stack(sio):
    """Build registry/service/handler; call inside the running event loop."""
    def build(store=None, room_timeout: float = 1800) -> Stack:
        return Stack(sio, store=store, room_timeout=room_timeout)
    return build


class FakeRedis:
    """The handful of async Redis commands the room store uses."""

    def __init__(self):
        self.hashes: Dict[str, Dict[str, str]] = defaultdict(dict)
        self.lists: Dict[str, List[str]] = defaultdict(list)
        self.zsets: Dict[str, Dict[str, float]] = defaultdict(dict)
        self.closed = False

    async def ping(self):
        return True

    async def hset(self, name, key=None, value=None, mapping=None):
        if key is not None:
            self.hashes[name][key] = value
        for k, v in (mapping or {}).items():
            self.hashes[name][k] = v
        return 1

    async def hget(self, name, key):
        return self.hashes.get(name, {}).get(key)

    async def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    async def hkeys(self, name):
        return list(self.hashes.get(name, {}))

    async def hdel(self, name, *keys):
        found = self.hashes.get(name, {})
        return sum(1 for key in keys if found.pop(key, None) is not None)

    async def delete(self, *names):
        removed = 0
        for name in names:
            for store in (self.hashes, self.lists, self.zsets):
                if store.pop(name, None) is not None:
                    removed += 1
        return removed

    async def rpush(self, name, *values):
        self.lists[name].extend(values)
        return len(self.lists[name])

    @staticmethod
    def _range(items, start, end):
        n = len(items)
        if start < 0:
            start = max(n + start, 0)
        if end < 0:
            end = n + end
        return items[start:end + 1]

    async def ltrim(self, name, start, end):
        self.lists[name] = self._range(self.lists[name], start, end)
        return True

    async def lrange(self, name, start, end):
        return self._range(self.lists.get(name, []), start, end)

    async def zadd(self, name, mapping):
        self.zsets[name].update(mapping)
        return len(mapping)

    async def zrem(self, name, *members):
        found = self.zsets.get(name, {})
        return sum(1 for member in members if found.pop(member, None) is not None)

    async def zrangebyscore(self, name, min, max):
        low, high = float(min), float(max)
        return [m for m, score in sorted(self.zsets.get(name, {}).items(), key=lambda i: i[1]) if low <= score <= high]

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()
