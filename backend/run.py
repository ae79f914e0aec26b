from refpanel import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # Werkzeug development server only; deploy under eventlet or gevent
    socketio.run(app, host=app.config['HOST'], port=app.config['PORT'], allow_unsafe_werkzeug=True)
