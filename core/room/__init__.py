"""
Voice room module

Provides the room/transmission orchestrator and its data models.
"""

from core.room.manager import VoiceRoomManager
from core.room.models import RoomStatistics, TransportChunk, VoiceMessage, VoiceRoom
from core.room.states import RoomState, RxState, TxState

__all__ = [
    'VoiceRoomManager',
    'RoomStatistics',
    'TransportChunk',
    'VoiceMessage',
    'VoiceRoom',
    'RoomState',
    'RxState',
    'TxState',
]
