"""
Exceptions raised by the room coordination core.
"""


class WatchPartyError(Exception):
    """Base class for watch party errors."""


class RoomNotFound(WatchPartyError):
    """The room exists neither in memory nor in the store."""

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class RoomFull(WatchPartyError):
    """The room already holds its maximum number of participants."""

    def __init__(self, room_id: str, max_participants: int):
        super().__init__(f"Room {room_id} is full ({max_participants} participants)")
        self.room_id = room_id
        self.max_participants = max_participants
