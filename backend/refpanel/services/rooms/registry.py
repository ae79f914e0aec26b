import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from refpanel.models import JUDGES, RoomAccess
from .scheduler import Scheduler
from .state import RoomState, DEFAULT_TIMER_MS, AUTO_CLEAR_MS, TICK_INTERVAL_MS


logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud and typed by hand
ROOM_ID_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ROOM_ID_LENGTH = 6
PIN_LENGTH = 4
TOKEN_BYTES = 9

StateUpdateSink = Callable[[str, dict], None]


def generate_room_id(length: int = ROOM_ID_LENGTH) -> str:
    return ''.join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


def generate_admin_pin(length: int = PIN_LENGTH) -> str:
    """Numeric PIN without a leading zero, e.g. '4821'."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def generate_referee_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_referee_tokens() -> Dict[str, str]:
    return {judge: generate_referee_token() for judge in JUDGES}


def _same(expected: str, given) -> bool:
    if not isinstance(given, str) or not given:
        return False
    return hmac.compare_digest(expected.encode('utf-8'), given.encode('utf-8'))


@dataclass
class Room:
    id: str
    admin_pin: str
    state: RoomState
    referee_tokens: Dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    unsubscribe: Optional[Callable[[], None]] = None

    def access(self) -> RoomAccess:
        return RoomAccess(self.id, self.admin_pin, dict(self.referee_tokens))


def normalize_room_id(room_id) -> str:
    return room_id.strip().upper() if isinstance(room_id, str) else ''


class RoomRegistry:
    """Owns every live room and decides who may act on it.

    The registry holds references only; all session changes go through the
    room's ``RoomState``. Snapshots of each room are forwarded to
    ``on_state_update(room_id, snapshot)``.
    """

    def __init__(self, on_state_update: StateUpdateSink, scheduler: Optional[Scheduler] = None,
                 default_timer_ms: int = DEFAULT_TIMER_MS,
                 auto_clear_ms: int = AUTO_CLEAR_MS,
                 tick_interval_ms: int = TICK_INTERVAL_MS):
        self._on_state_update = on_state_update
        self._scheduler = scheduler or Scheduler()
        self._state_options = {
            'default_timer_ms': default_timer_ms,
            'auto_clear_ms': auto_clear_ms,
            'tick_interval_ms': tick_interval_ms,
        }
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id) -> bool:
        return normalize_room_id(room_id) in self._rooms

    def create_room(self) -> RoomAccess:
        state = RoomState(self._scheduler, **self._state_options)
        with self._lock:
            room_id = generate_room_id()
            while room_id in self._rooms:
                room_id = generate_room_id()
            room = Room(
                id=room_id,
                admin_pin=generate_admin_pin(),
                state=state,
                referee_tokens=generate_referee_tokens(),
            )
            self._rooms[room_id] = room
        room.unsubscribe = state.on_snapshot(lambda snapshot: self._on_state_update(room_id, snapshot))
        logger.info(f"[room-create] room={room_id} rooms={len(self._rooms)}")
        return room.access()

    def close_room(self, room_id) -> bool:
        with self._lock:
            room = self._rooms.pop(normalize_room_id(room_id), None)
        if not room:
            return False
        if room.unsubscribe:
            room.unsubscribe()
        room.state.shutdown()
        logger.info(f"[room-close] room={room.id} rooms={len(self._rooms)}")
        return True

    def verify_admin_pin(self, room_id, pin) -> bool:
        room = self._get(room_id)
        if not room:
            return False
        return _same(room.admin_pin, pin)

    def get_room_access(self, room_id, pin) -> Optional[RoomAccess]:
        room = self._get(room_id)
        if not room or not _same(room.admin_pin, pin):
            return None
        return room.access()

    def get_referee_tokens(self, room_id) -> Optional[Dict[str, str]]:
        room = self._get(room_id)
        if not room:
            return None
        return dict(room.referee_tokens)

    def rotate_referee_tokens(self, room_id) -> Optional[RoomAccess]:
        room = self._get(room_id)
        if not room:
            return None
        # Swap the whole mapping at once so no mix of old and new tokens is visible
        room.referee_tokens = generate_referee_tokens()
        room.state.set_all_connected(False)
        logger.info(f"[rotate] room={room.id} referee tokens rotated")
        return room.access()

    def is_valid_ref_token(self, room_id, judge, token) -> bool:
        room = self._get(room_id)
        if not room or judge not in JUDGES:
            return False
        return _same(room.referee_tokens[judge], token)

    def get_room_state(self, room_id) -> Optional[RoomState]:
        room = self._get(room_id)
        return room.state if room else None

    def _get(self, room_id) -> Optional[Room]:
        return self._rooms.get(normalize_room_id(room_id))
