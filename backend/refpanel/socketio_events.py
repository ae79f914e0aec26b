import functools
import math
from typing import Any, Dict

from flask import current_app, request
from flask_socketio import join_room, leave_room, emit

from refpanel import socketio, get_registry
from refpanel.errors import (
    RoomError, InvalidPayload, InvalidPin, InvalidToken, NotAuthorised, RoomNotFound, UnknownAction,
)
from refpanel.models import (
    ROLES, ROLE_VIEWER, VOTES, TIMER_ACTIONS, INTERVAL_ACTIONS,
    is_admin, is_judge, is_card, can_control_timer,
)
from refpanel.services.rooms import normalize_room_id


# Per-connection context: role, bound room and the credential it registered with
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _ctx() -> Dict[str, Any]:
    return _sid_to_ctx.setdefault(_get_sid(), {'role': ROLE_VIEWER, 'room_id': None, 'credential': None})


def _group(room_id: str) -> str:
    return f"room:{room_id}"


def socket_command(handler):
    """Turn a handler into one that always acks ``{'ok': True}`` or ``{'error': code}``."""
    @functools.wraps(handler)
    def wrapper(*args):
        try:
            handler(*args)
        except RoomError as exc:
            ctx = _sid_to_ctx.get(_get_sid(), {})
            current_app.logger.info(
                f"[reject] event={handler.__name__} role={ctx.get('role')} room={ctx.get('room_id')} error={exc.code}"
            )
            return exc.to_dict()
        except Exception:
            current_app.logger.exception(f"[error] event={handler.__name__} failed")
            return {'error': 'unknown_error'}
        return {'ok': True}
    return wrapper


def _payload(data) -> Dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidPayload()
    return data


def _seconds(data, default):
    value = data.get('seconds', default)
    if value is None:
        value = default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidPayload()
    return value


# ---- Guards: re-checked against the live registry on every command ----

def _room_state(room_id):
    state = get_registry().get_room_state(room_id) if room_id else None
    if state is None:
        raise RoomNotFound()
    return state


def _require_admin(ctx):
    if not is_admin(ctx['role']):
        raise NotAuthorised()
    state = _room_state(ctx['room_id'])
    if not get_registry().verify_admin_pin(ctx['room_id'], ctx['credential']):
        raise InvalidPin()
    return state


def _require_judge(ctx):
    if not is_judge(ctx['role']):
        raise NotAuthorised()
    state = _room_state(ctx['room_id'])
    if not get_registry().is_valid_ref_token(ctx['room_id'], ctx['role'], ctx['credential']):
        raise InvalidToken()
    return state


def _require_timer_control(ctx):
    if not can_control_timer(ctx['role']):
        raise NotAuthorised()
    if is_admin(ctx['role']):
        return _require_admin(ctx)
    return _require_judge(ctx)


# ---- Presence ----

def _release_presence(sid: str, ctx: Dict[str, Any]) -> None:
    """Mark a judge seat empty unless another live connection still holds it.

    A connection registered with a rotated-out token no longer holds the seat.
    """
    role, room_id = ctx.get('role'), ctx.get('room_id')
    if not is_judge(role) or not room_id:
        return
    registry = get_registry()
    for other_sid, other in list(_sid_to_ctx.items()):
        if other_sid == sid or other.get('role') != role or other.get('room_id') != room_id:
            continue
        if registry.is_valid_ref_token(room_id, role, other.get('credential')):
            return
    state = registry.get_room_state(room_id)
    if state is not None:
        state.set_connected(role, False)


# ---- Handlers ----

def handle_connect(auth=None):
    _ctx()
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    sid = _get_sid()
    ctx = _sid_to_ctx.pop(sid, None)
    if not ctx:
        return
    current_app.logger.info(f"[disconnect] role={ctx.get('role')} room={ctx.get('room_id')} reason={reason}")
    _release_presence(sid, ctx)


@socket_command
def handle_register(data=None):
    data = _payload(data)
    role = data.get('role', ROLE_VIEWER)
    room_id = normalize_room_id(data.get('roomId'))
    if role not in ROLES or not room_id:
        raise InvalidPayload()

    registry = get_registry()
    state = registry.get_room_state(room_id)
    if state is None:
        raise RoomNotFound()
    credential = None
    if is_admin(role):
        credential = data.get('pin')
        if not registry.verify_admin_pin(room_id, credential):
            raise InvalidPin()
    elif is_judge(role):
        credential = data.get('token')
        if not registry.is_valid_ref_token(room_id, role, credential):
            raise InvalidToken()

    sid = _get_sid()
    ctx = _ctx()
    if ctx.get('room_id'):
        # Give up the previous seat before taking the new one
        previous = dict(ctx)
        ctx.update(role=ROLE_VIEWER, room_id=None, credential=None)
        if previous['room_id'] != room_id or previous['role'] != role:
            _release_presence(sid, previous)
        if previous['room_id'] != room_id:
            leave_room(_group(previous['room_id']))

    join_room(_group(room_id))
    ctx.update(role=role, room_id=room_id, credential=credential)
    current_app.logger.info(f"[register] room={room_id} role={role}")
    if is_judge(role):
        state.set_connected(role, True)
    emit('state:update', state.get_snapshot())


@socket_command
def handle_ref_vote(data=None):
    ctx = _ctx()
    state = _require_judge(ctx)
    data = _payload(data)
    if 'vote' not in data:
        raise InvalidPayload()
    vote = data['vote']
    if vote is not None and vote not in VOTES:
        raise InvalidPayload()
    state.set_vote(ctx['role'], vote)


@socket_command
def handle_ref_card(data=None):
    ctx = _ctx()
    state = _require_judge(ctx)
    data = _payload(data)
    if 'card' not in data:
        raise InvalidPayload()
    card = data['card']
    if card is not None and not is_card(card):
        raise InvalidPayload()
    state.set_card(ctx['role'], card)


@socket_command
def handle_admin_ready(data=None):
    _require_admin(_ctx()).set_phase_ready()


@socket_command
def handle_admin_release(data=None):
    _require_admin(_ctx()).release_decision()


@socket_command
def handle_admin_clear(data=None):
    _require_admin(_ctx()).clear_decision()


@socket_command
def handle_timer_command(data=None):
    state = _require_timer_control(_ctx())
    data = _payload(data)
    action = data.get('action')
    if action not in TIMER_ACTIONS:
        raise UnknownAction()
    if action == 'start':
        state.start_timer()
    elif action == 'stop':
        state.stop_timer()
    elif action == 'reset':
        state.reset_timer()
    else:
        default = current_app.config.get('DEFAULT_TIMER_MS', 60000) / 1000.0
        state.start_timer_with_seconds(_seconds(data, default))


@socket_command
def handle_interval_command(data=None):
    state = _require_admin(_ctx())
    data = _payload(data)
    action = data.get('action')
    if action not in INTERVAL_ACTIONS:
        raise UnknownAction()
    if action == 'start':
        state.start_interval()
    elif action == 'stop':
        state.stop_interval()
    elif action == 'reset':
        state.reset_interval()
    elif action == 'set':
        state.configure_interval(_seconds(data, 0))
    else:
        state.set_interval_visible(action == 'show')


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('client:register', handle_register, namespace=namespace)
    socketio.on_event('ref:vote', handle_ref_vote, namespace=namespace)
    socketio.on_event('ref:card', handle_ref_card, namespace=namespace)
    socketio.on_event('admin:ready', handle_admin_ready, namespace=namespace)
    socketio.on_event('admin:release', handle_admin_release, namespace=namespace)
    socketio.on_event('admin:clear', handle_admin_clear, namespace=namespace)
    socketio.on_event('timer:command', handle_timer_command, namespace=namespace)
    socketio.on_event('interval:command', handle_interval_command, namespace=namespace)
