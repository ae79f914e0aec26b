"""Shared vocabulary for rooms: judge positions, votes, cards and roles."""
from dataclasses import dataclass, field
from typing import Dict

JUDGES = ('left', 'center', 'right')

VOTE_WHITE = 'white'
VOTE_RED = 'red'
VOTES = (VOTE_WHITE, VOTE_RED)

# Penalty cards a judge can attach to a red light
CARDS = (1, 2, 3)
MAX_CARDS = 3

PHASE_IDLE = 'idle'
PHASE_REVEALED = 'revealed'

ROLE_ADMIN = 'admin'
ROLE_DISPLAY = 'display'
ROLE_VIEWER = 'viewer'
ADMIN_ROLES = (ROLE_ADMIN, ROLE_DISPLAY)
ROLES = ADMIN_ROLES + JUDGES + (ROLE_VIEWER,)

# The center judge runs the official lift clock
TIMER_ROLES = ADMIN_ROLES + ('center',)

TIMER_ACTIONS = ('start', 'stop', 'reset', 'set')
INTERVAL_ACTIONS = ('start', 'stop', 'reset', 'set', 'show', 'hide')


def is_judge(role) -> bool:
    return role in JUDGES


def is_admin(role) -> bool:
    return role in ADMIN_ROLES


def can_control_timer(role) -> bool:
    return role in TIMER_ROLES


def is_card(value) -> bool:
    # bool is an int subclass; True must not pass as card 1
    return isinstance(value, int) and not isinstance(value, bool) and value in CARDS


@dataclass
class RoomAccess:
    """Credentials handed to whoever administers a room."""
    room_id: str
    admin_pin: str
    referee_tokens: Dict[str, str] = field(default_factory=dict)

    def to_dict(self):
        return {
            'roomId': self.room_id,
            'adminPin': self.admin_pin,
            'joinQRCodes': {
                judge: {'token': self.referee_tokens[judge]} for judge in JUDGES
            },
        }
