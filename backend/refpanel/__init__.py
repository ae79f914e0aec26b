import logging

from flask import Flask, current_app
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

from refpanel.services.rooms import RoomRegistry, Scheduler

socketio = SocketIO(async_mode=None)

REGISTRY_KEY = 'refpanel.rooms'


def _parse_origins(value):
    if not value or value == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def get_registry(flask_app=None) -> RoomRegistry:
    flask_app = flask_app or current_app
    return flask_app.extensions[REGISTRY_KEY]


def create_app(config_class=Config, scheduler=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    level = str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    flask_app.logger.setLevel(level)

    allowed_origins = _parse_origins(flask_app.config.get('CORS_ORIGINS'))
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    namespace = flask_app.config.get('SOCKETIO_NAMESPACE', '/ws')

    def broadcast_state(room_id, snapshot):
        # Called from request handlers and from timer tasks alike
        socketio.emit('state:update', snapshot, to=f"room:{room_id}", namespace=namespace)

    if scheduler is None:
        scheduler = Scheduler(spawn=socketio.start_background_task, sleep=socketio.sleep)
    flask_app.extensions[REGISTRY_KEY] = RoomRegistry(
        broadcast_state,
        scheduler=scheduler,
        default_timer_ms=int(flask_app.config.get('DEFAULT_TIMER_MS', 60000)),
        auto_clear_ms=int(flask_app.config.get('AUTO_CLEAR_MS', 10000)),
        tick_interval_ms=int(flask_app.config.get('TICK_INTERVAL_MS', 200)),
    )

    from refpanel.main import main
    flask_app.register_blueprint(main)

    from refpanel.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/rooms')

    # Importing here ensures the handlers bind to the initialized socketio instance
    from refpanel.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace)

    flask_app.logger.info(f"[startup] origins={allowed_origins} namespace={namespace}")
    return flask_app
