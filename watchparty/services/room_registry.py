"""
Room registry for the Watch Party server.

Owns the mapping of room id to Room and the per-room expiry tasks. Registry
dictionaries are only touched in synchronous sections, which makes each
lookup/insert/remove atomic on the event loop. Store I/O never happens inside
those sections: writes are queued as background tasks, chained per room so
they reach the store in the order the mutations happened.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..config import ROOM_TIMEOUT, SNAPSHOT_MESSAGE_LIMIT
from ..models.room import Message, Participant, Room, RoomSettings, generate_id
from .store import RoomStore

logger = logging.getLogger("watchparty.services.room_registry")


class RoomRegistry:
    """Tracks every active room and keeps the store eventually consistent."""

    def __init__(self, store: Optional[RoomStore] = None, room_timeout: float = ROOM_TIMEOUT):
        self.store = store
        self.room_timeout = room_timeout
        self._rooms: Dict[str, Room] = {}
        self._expiry_tasks: Dict[str, asyncio.Task] = {}
        self._loading: Dict[str, asyncio.Task] = {}
        self._pending_writes: Dict[str, asyncio.Task] = {}
        logger.info(f"🏢 RoomRegistry initialized (store: {type(store).__name__ if store else 'none'})")

    def create_room(self, name: str, anime: str, episode: str, host_name: str,
                    settings: Optional[RoomSettings] = None, episode_id: Optional[str] = None,
                    host_id: Optional[str] = None) -> Tuple[Room, Participant]:
        """Create a room with its creator seated as host."""
        room_id = generate_id()
        while room_id in self._rooms:
            room_id = generate_id()

        room = Room(room_id, name, anime, episode, episode_id=episode_id, settings=settings)
        host = room.add_host(host_id or generate_id(), host_name)
        self._rooms[room_id] = room
        self._schedule_expiry(room)

        self._persist(room_id, f"save room {room_id}", 'save_room', room)
        self._persist(room_id, f"save participant {host.id}", 'save_participant', room_id, host)

        logger.info(f"🏠 Created room {room_id} - {name} (host: {host_name})")
        return room, host

    def get(self, room_id: str) -> Optional[Room]:
        """In-memory lookup only."""
        return self._rooms.get(room_id)

    async def get_or_load(self, room_id: str) -> Optional[Room]:
        """Return the live room, rehydrating it from the store if needed."""
        room = self._rooms.get(room_id)
        if room is not None or self.store is None:
            return room

        task = self._loading.get(room_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._load(room_id))
            self._loading[room_id] = task
            task.add_done_callback(lambda _: self._loading.pop(room_id, None))
        return await asyncio.shield(task)

    async def _load(self, room_id: str) -> Optional[Room]:
        # Let queued writes (including a pending delete) land first.
        pending = self._pending_writes.get(room_id)
        if pending is not None:
            await asyncio.wait([pending])

        try:
            room = await self.store.load_room(room_id)
            if room is None:
                return None
            room.messages = await self.store.load_recent_messages(room_id, SNAPSHOT_MESSAGE_LIMIT)
        except Exception as e:
            logger.error(f"❌ Failed to load room {room_id} from store: {e}")
            return None

        existing = self._rooms.get(room_id)
        if existing is not None:
            return existing

        self._rooms[room_id] = room
        self.touch(room)
        self._schedule_expiry(room)
        logger.info(f"♻️ Rehydrated room {room_id} with {room.participant_count} participants")
        return room

    def touch(self, room: Room) -> None:
        """Record activity on a room and push its row to the store."""
        room.touch()
        self._persist(room.id, f"save room {room.id}", 'save_room', room)

    def evict_if_empty(self, room: Room) -> bool:
        if not room.is_empty:
            return False
        self.evict(room)
        return True

    def evict(self, room: Room) -> None:
        """Drop a room from memory and delete it from the store."""
        room.closed = True
        if self._rooms.get(room.id) is room:
            del self._rooms[room.id]
        self._cancel_expiry(room.id)
        self._persist(room.id, f"delete room {room.id}", 'delete_room', room.id)
        logger.info(f"🗑️ Evicted room {room.id}")

    async def sweep_idle(self, idle_seconds: float) -> int:
        """Evict every room idle for at least ``idle_seconds``."""
        evicted = 0
        for room in list(self._rooms.values()):
            if room.idle_for() < idle_seconds:
                continue
            async with room.lock:
                if room.closed or room.idle_for() < idle_seconds:
                    continue
                logger.info(f"🧹 Cleaning up inactive room: {room.id}")
                self.evict(room)
                evicted += 1
        return evicted

    # Store writes

    def save_participant(self, room: Room, participant: Participant) -> None:
        self._persist(room.id, f"save participant {participant.id}", 'save_participant', room.id, participant)

    def remove_participant(self, room: Room, participant: Participant) -> None:
        self._persist(room.id, f"remove participant {participant.id}", 'remove_participant', participant.id)

    def save_message(self, room: Room, message: Message) -> None:
        self._persist(room.id, f"save message {message.id}", 'save_message', room.id, message)

    def _persist(self, room_id: str, description: str, method: str, *args) -> None:
        if self.store is None:
            return
        previous = self._pending_writes.get(room_id)
        task = asyncio.get_running_loop().create_task(
            self._run_write(previous, description, getattr(self.store, method), *args)
        )
        self._pending_writes[room_id] = task
        task.add_done_callback(lambda t: self._forget_write(room_id, t))

    async def _run_write(self, previous: Optional[asyncio.Task], description: str, operation, *args) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await operation(*args)
        except Exception as e:
            logger.error(f"❌ Failed to {description}: {e}")

    def _forget_write(self, room_id: str, task: asyncio.Task) -> None:
        if self._pending_writes.get(room_id) is task:
            del self._pending_writes[room_id]

    async def flush(self) -> None:
        """Wait until every queued store write has finished."""
        while True:
            pending = [task for task in self._pending_writes.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # Expiry

    def _schedule_expiry(self, room: Room) -> None:
        self._cancel_expiry(room.id)
        self._expiry_tasks[room.id] = asyncio.get_running_loop().create_task(self._expire_when_idle(room))

    def _cancel_expiry(self, room_id: str) -> None:
        task = self._expiry_tasks.pop(room_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire_when_idle(self, room: Room) -> None:
        # Sleeps until the room has been idle for the full timeout; activity
        # in between pushes the deadline out.
        delay = self.room_timeout
        while True:
            await asyncio.sleep(delay)
            async with room.lock:
                if room.closed or self._rooms.get(room.id) is not room:
                    return
                delay = self.room_timeout - room.idle_for()
                if delay <= 0:
                    logger.info(f"⏰ Room {room.id} timed out")
                    self.evict(room)
                    return

    async def close(self) -> None:
        """Cancel expiry timers and wait for outstanding store writes."""
        tasks = list(self._expiry_tasks.values())
        self._expiry_tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.flush()

    # Introspection

    def list_rooms(self) -> List[dict]:
        return [room.summary() for room in self._rooms.values()]

    def stats(self) -> dict:
        """Get statistics about all rooms."""
        return {
            'total_rooms': len(self._rooms),
            'total_participants': sum(room.participant_count for room in self._rooms.values()),
            'rooms': {room_id: room.participant_count for room_id, room in self._rooms.items()},
        }

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
