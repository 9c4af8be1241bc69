"""
Socket.IO event handlers for the Watch Party server.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

import socketio

from ..errors import RoomFull, RoomNotFound
from ..services.watch_party import WatchPartyService

logger = logging.getLogger("watchparty.handlers.socket_events")


@dataclass
class Session:
    """The room a connection currently occupies and the identity it joined with."""
    room_id: str
    participant_id: str
    user_name: str


def _text(data: Any, key: str) -> str:
    if not isinstance(data, dict):
        return ''
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ''


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_playback(data: Any) -> Dict[str, Any]:
    """Pick the playback fields out of a client payload."""
    if not isinstance(data, dict):
        return {}
    changes: Dict[str, Any] = {}
    if isinstance(data.get('isPlaying'), bool):
        changes['is_playing'] = data['isPlaying']
    for key, name in (('currentTime', 'current_time'), ('duration', 'duration')):
        value = _number(data.get(key))
        if value is not None and value >= 0:
            changes[name] = value
    return changes


class SocketEventHandler:
    """Handles all Socket.IO events."""

    def __init__(self, sio: socketio.AsyncServer, service: WatchPartyService):
        self.sio = sio
        self.service = service
        self._sessions: Dict[str, Session] = {}
        self._connected: Set[str] = set()
        self._register_events()
        logger.info("🔌 Socket event handlers registered")

    def _register_events(self):
        """Register all Socket.IO event handlers."""
        self.sio.on('connect')(self.handle_connect)
        self.sio.on('disconnect')(self.handle_disconnect)
        self.sio.on('join-room')(self.handle_join_room)
        self.sio.on('leave-room')(self.handle_leave_room)
        self.sio.on('send-message')(self.handle_send_message)
        self.sio.on('update-playback')(self.handle_update_playback)
        self.sio.on('kick-participant')(self.handle_kick_participant)
        self.sio.on('transfer-host')(self.handle_transfer_host)

    def get_session(self, sid: str) -> Optional[Session]:
        return self._sessions.get(sid)

    async def _error(self, sid: str, message: str) -> None:
        await self.sio.emit('error', {'message': message}, room=sid)

    async def handle_connect(self, sid: str, environ: Dict, auth: Any = None):
        """Handle client connection."""
        logger.info(f"🔗 Client {sid} connected")
        self._connected.add(sid)

    async def handle_disconnect(self, sid: str, reason: Any = None):
        """Handle client disconnection: same effects as an explicit leave."""
        logger.info(f"🔗 Client {sid} disconnected")
        self._connected.discard(sid)
        await self._leave_current_room(sid)

    async def _leave_current_room(self, sid: str) -> None:
        # Popping first makes the leave path run once per session even if
        # leave-room and disconnect arrive together.
        session = self._sessions.pop(sid, None)
        if session is None:
            return
        try:
            await self.service.leave(session.room_id, session.participant_id, sid=sid)
        except Exception as e:
            logger.error(f"❌ Error leaving room {session.room_id} for {sid}: {e}")

    async def handle_join_room(self, sid: str, data: Dict[str, Any]):
        """Handle a connection joining a room."""
        room_id = _text(data, 'roomId')
        user_name = _text(data, 'userName')
        participant_id = _text(data, 'userId') or sid

        if not room_id or not user_name:
            await self._error(sid, 'Room ID and user name are required')
            return

        try:
            session = self._sessions.get(sid)
            if session and (session.room_id != room_id or session.participant_id != participant_id):
                # Refused joins keep the connection where it was.
                vacating = session.participant_id if session.room_id == room_id else None
                await self.service.check_joinable(room_id, participant_id, vacating=vacating)
                await self._leave_current_room(sid)

            result = await self.service.join(room_id, participant_id, user_name, sid=sid)

            if result.previous_sid:
                logger.info(f"🔄 {user_name} moved from connection {result.previous_sid} to {sid}")
                self._sessions.pop(result.previous_sid, None)
            self._sessions[sid] = Session(room_id, participant_id, user_name)

            # The connection dropped while the join was in flight.
            if sid not in self._connected:
                await self._leave_current_room(sid)
                return

            logger.info(f"👥 {user_name} joined room: {room_id} (total: {result.room.participant_count})")
        except RoomNotFound:
            await self._error(sid, 'Room not found')
        except RoomFull:
            await self._error(sid, 'Room is full')
        except Exception as e:
            logger.error(f"❌ Error joining room: {e}")
            await self._error(sid, 'Failed to join room')

    async def handle_leave_room(self, sid: str, data: Any = None):
        """Handle an explicit leave."""
        await self._leave_current_room(sid)

    async def handle_send_message(self, sid: str, data: Dict[str, Any]):
        """Handle chat messages."""
        session = self._sessions.get(sid)
        content = _text(data, 'content')
        if session is None or not content:
            return

        try:
            message = await self.service.send_message(session.room_id, content, participant_id=session.participant_id)
            if message is None:
                logger.debug(f"💬 Message from {sid} declined in room {session.room_id}")
        except RoomNotFound:
            self._sessions.pop(sid, None)
        except Exception as e:
            logger.error(f"❌ Error sending message: {e}")
            await self._error(sid, 'Failed to send message')

    async def handle_update_playback(self, sid: str, data: Dict[str, Any]):
        """Handle playback state updates."""
        session = self._sessions.get(sid)
        changes = parse_playback(data)
        if session is None or not changes:
            return

        try:
            await self.service.update_playback(session.room_id, changes,
                                               participant_id=session.participant_id, sid=sid)
        except RoomNotFound:
            self._sessions.pop(sid, None)
        except Exception as e:
            logger.error(f"❌ Error updating playback: {e}")
            await self._error(sid, 'Failed to update playback')

    async def handle_kick_participant(self, sid: str, data: Dict[str, Any]):
        """Handle kick requests (host only)."""
        session = self._sessions.get(sid)
        target_id = _text(data, 'userId')
        if session is None or not target_id:
            return

        try:
            kicked = await self.service.kick(session.room_id, session.participant_id, target_id)
            if kicked is not None and kicked.sid:
                self._sessions.pop(kicked.sid, None)
        except RoomNotFound:
            self._sessions.pop(sid, None)
        except Exception as e:
            logger.error(f"❌ Error kicking participant: {e}")
            await self._error(sid, 'Failed to kick participant')

    async def handle_transfer_host(self, sid: str, data: Dict[str, Any]):
        """Handle host transfer requests (host only)."""
        session = self._sessions.get(sid)
        target_id = _text(data, 'userId')
        if session is None or not target_id:
            return

        try:
            await self.service.transfer_host(session.room_id, session.participant_id, target_id)
        except RoomNotFound:
            self._sessions.pop(sid, None)
        except Exception as e:
            logger.error(f"❌ Error transferring host: {e}")
            await self._error(sid, 'Failed to transfer host')
