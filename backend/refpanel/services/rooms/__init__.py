"""Room domain services: per-room state machine, room registry and timers.

This package holds the session logic used by the HTTP routes and socket
handlers, keeping transport concerns separated from the room mechanics.
"""
from .registry import RoomRegistry, normalize_room_id
from .scheduler import Scheduler, TaskHandle
from .state import RoomState

__all__ = ['RoomRegistry', 'RoomState', 'Scheduler', 'TaskHandle', 'normalize_room_id']
