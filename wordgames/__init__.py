from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def get_coordinator(flask_app=None):
    """The ConnectionCoordinator built by ``create_app`` for this app."""
    from flask import current_app
    return (flask_app or current_app).extensions['game_coordinator']


def create_app(config_class=Config, scheduler=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    origins = flask_app.config.get('CORS_ORIGINS', [])

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from wordgames.services.coordinator import ConnectionCoordinator
    from wordgames.services.persistence import PersistenceGateway
    from wordgames.services.registry import SessionRegistry
    from wordgames.services.scheduler import TimerScheduler, run_periodic
    from wordgames.services.write_behind import WriteBehindQueue
    from wordgames.transport import SocketIOTransport

    gateway = PersistenceGateway(db)
    queue = WriteBehindQueue(
        gateway.apply_batch,
        batch_size=flask_app.config.get('WRITE_BEHIND_BATCH_SIZE', 10),
        max_retries=flask_app.config.get('WRITE_BEHIND_MAX_RETRIES', 3),
        interval=flask_app.config.get('WRITE_BEHIND_INTERVAL_SEC', 2.0),
        max_pending=flask_app.config.get('WRITE_BEHIND_MAX_PENDING', 10000),
        sleep=socketio.sleep,
    )
    if scheduler is None:
        scheduler = TimerScheduler(socketio)
    registry = SessionRegistry(
        gateway,
        scheduler,
        idle_threshold=flask_app.config.get('SESSION_IDLE_TIMEOUT_SEC', 24 * 60 * 60),
    )
    coordinator = ConnectionCoordinator(registry, gateway, queue, SocketIOTransport(socketio), flask_app.config)
    scheduler.bind(flask_app, coordinator.handle_timer)
    flask_app.extensions['game_coordinator'] = coordinator

    # Import and register blueprints here
    from wordgames.main import main
    flask_app.register_blueprint(main)

    from wordgames.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Register Socket.IO event handlers
    from wordgames.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    if not flask_app.config.get('TESTING') or flask_app.config.get('ENABLE_WORKERS_IN_TESTS'):
        queue.start(flask_app, socketio.start_background_task)
        run_periodic(
            socketio,
            flask_app,
            flask_app.config.get('IDLE_SWEEP_INTERVAL_SEC', 3600),
            coordinator.sweep_idle,
            'sweep',
        )

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates every table."""
        from wordgames import models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('drain-queue')
    def drain_queue_command():
        """Applies every pending write-behind operation now."""
        with flask_app.app_context():
            committed = queue.flush()
            stats = queue.stats()
            print(f"Applied {committed} operations ({stats['pending']} pending, {stats['dropped']} dropped)")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(drain_queue_command)

    return flask_app
