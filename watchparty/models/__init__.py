"""
Models package for the Watch Party server.
"""

from .room import Room, RoomSettings, PlaybackState, Message, Participant, generate_id

__all__ = ['Room', 'RoomSettings', 'PlaybackState', 'Message', 'Participant', 'generate_id']
