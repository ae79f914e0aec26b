from flask import Blueprint, jsonify, request, current_app
from refpanel import get_registry, socketio
from werkzeug.exceptions import HTTPException
from refpanel.errors import RoomError, InvalidPin, RoomNotFound
from refpanel.services.rooms import normalize_room_id


rooms = Blueprint('rooms', __name__)


@rooms.errorhandler(RoomError)
def handle_room_error(exc):
    return jsonify(exc.to_dict()), exc.status


@rooms.errorhandler(Exception)
def handle_unexpected_error(exc):
    if isinstance(exc, HTTPException):
        return exc
    current_app.logger.exception(f"[rooms] unexpected error on {request.path}")
    return jsonify({'error': 'unknown_error'}), 500


def _admin_pin_from_body():
    data = request.get_json(silent=True) or {}
    return data.get('adminPin') if isinstance(data, dict) else None


def _require_admin(room_id):
    """Resolve the room and check the PIN in the body; 404 before 403."""
    registry = get_registry()
    if room_id not in registry:
        raise RoomNotFound()
    pin = _admin_pin_from_body()
    if not registry.verify_admin_pin(room_id, pin):
        current_app.logger.info(f"[rooms] bad pin for room={normalize_room_id(room_id)}")
        raise InvalidPin()
    return registry


@rooms.route('', methods=['POST'])
def create_room():
    """
    Creates a new room and returns its id, admin PIN and judge join tokens.
    """
    access = get_registry().create_room()
    return jsonify(access.to_dict()), 201


@rooms.route('/<string:room_id>/access', methods=['POST'])
def room_access(room_id):
    """
    Returns the credential bundle again for whoever knows the admin PIN.
    """
    registry = _require_admin(room_id)
    access = registry.get_room_access(room_id, _admin_pin_from_body())
    if access is None:
        # Room closed between the check and the lookup
        raise RoomNotFound()
    return jsonify(access.to_dict())


@rooms.route('/<string:room_id>/refresh-ref-tokens', methods=['POST'])
def refresh_ref_tokens(room_id):
    """
    Issues new judge tokens; every previously issued token stops working.
    """
    registry = _require_admin(room_id)
    access = registry.rotate_referee_tokens(room_id)
    if access is None:
        raise RoomNotFound()
    return jsonify(access.to_dict())


@rooms.route('/<string:room_id>/state', methods=['GET'])
def room_state(room_id):
    state = get_registry().get_room_state(room_id)
    if state is None:
        raise RoomNotFound()
    return jsonify(state.get_snapshot())


@rooms.route('/<string:room_id>', methods=['DELETE'])
def close_room(room_id):
    """
    Ends the room: timers stop, clients are told, credentials become invalid.
    """
    registry = _require_admin(room_id)
    code = normalize_room_id(room_id)
    if not registry.close_room(code):
        raise RoomNotFound()
    namespace = current_app.config.get('SOCKETIO_NAMESPACE', '/ws')
    socketio.emit('session:ended', {'roomId': code}, to=f"room:{code}", namespace=namespace)
    return jsonify({'ok': True})
