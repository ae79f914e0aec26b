import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Comma separated list of allowed origins, '*' allows any
    CORS_ORIGINS = os.environ.get('CORS_ORIGIN', '*')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', '3333'))
    SOCKETIO_NAMESPACE = '/ws'
    # Room timing (milliseconds)
    DEFAULT_TIMER_MS = int(os.environ.get('DEFAULT_TIMER_MS', '60000'))
    AUTO_CLEAR_MS = int(os.environ.get('AUTO_CLEAR_MS', '10000'))
    TICK_INTERVAL_MS = int(os.environ.get('TICK_INTERVAL_MS', '200'))
