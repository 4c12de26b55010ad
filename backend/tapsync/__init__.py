from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config

socketio = SocketIO(async_mode=None)


def _allowed_origins(value):
    if not value or value.strip() == '*':
        return '*'
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper())

    allowed_origins = _allowed_origins(flask_app.config.get('CORS_ORIGINS'))
    CORS(flask_app, origins=allowed_origins)
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Shared state lives for the life of the process: load-or-default now,
    # no teardown beyond exit
    from tapsync.registry import ConnectionRegistry
    from tapsync.services.persistence import PersistenceScheduler, load_state, write_state
    from tapsync.socketio_events import ProtocolRouter, register_socketio_handlers
    from tapsync.store import SharedState

    logger = flask_app.logger
    data_file = flask_app.config['DATA_FILE']
    state = SharedState.from_dict(
        load_state(data_file, logger=logger),
        chat_capacity=int(flask_app.config.get('CHAT_CAPACITY', 500)),
        logger=logger,
    )
    registry = ConnectionRegistry(
        sender=lambda raw, to: socketio.send(raw, to=to, namespace='/'),
        logger=logger,
    )
    router = ProtocolRouter(state, registry, logger=logger)
    router.attach_persistence(PersistenceScheduler(
        data_file,
        snapshot=router.snapshot,
        delay=float(flask_app.config.get('SAVE_DELAY_SEC', 2.0)),
        spawn=socketio.start_background_task,
        sleep=socketio.sleep,
        logger=logger,
    ))
    flask_app.extensions['tapsync'] = router

    register_socketio_handlers()

    from tapsync.routes import main
    flask_app.register_blueprint(main)

    @click.command('state-reset')
    def state_reset_command():
        """Clears the shared state and overwrites the state file with it."""
        with router.lock:
            state.clear()
        router.persistence.cancel()
        write_state(data_file, router.snapshot())
        click.echo(f'State reset: {data_file}')

    @click.command('state-flush')
    def state_flush_command():
        """Writes the current state to disk immediately."""
        if router.persistence.flush_now():
            click.echo(f'State written: {data_file}')
        else:
            raise click.ClickException(f'Could not write {data_file}')

    flask_app.cli.add_command(state_reset_command)
    flask_app.cli.add_command(state_flush_command)

    return flask_app
