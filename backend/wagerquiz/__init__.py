from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from wagerquiz.config import Config

socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or ['*']
    if '*' in allowed_origins:
        allowed_origins = '*'
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Question bank is loaded once and treated as read-only
    from wagerquiz.questions import load_question_bank
    question_bank = load_question_bank(flask_app.config['QUESTIONS_PATH'])
    flask_app.logger.info(f"[questions] loaded {len(question_bank)} from {flask_app.config['QUESTIONS_PATH']}")

    # The engine owns the room registry; handlers reach it via app.extensions
    from wagerquiz.services.games.engine import GameEngine
    from wagerquiz.services.games.scheduler import Scheduler
    from wagerquiz.socketio_events import SocketIONotifier, register_socketio_handlers
    flask_app.extensions['wagerquiz'] = GameEngine.from_config(
        flask_app.config,
        question_bank,
        SocketIONotifier(socketio),
        Scheduler(socketio),
        flask_app.logger,
    )

    # Import and register blueprints here
    from wagerquiz.routes import main
    flask_app.register_blueprint(main)

    from wagerquiz.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    register_socketio_handlers()

    @click.command('check-questions')
    @click.option('--path', default=None, help='Question bank to check (defaults to QUESTIONS_PATH).')
    def check_questions_command(path):
        """Validates the question bank and reports its size."""
        path = path or flask_app.config['QUESTIONS_PATH']
        try:
            bank = load_question_bank(path)
        except (OSError, ValueError) as exc:
            raise click.ClickException(f'{path}: {exc}')
        limit = flask_app.config['QUESTION_LIMIT']
        click.echo(f'{path}: {len(bank)} questions OK')
        if len(bank) < limit:
            click.echo(f'warning: fewer questions than QUESTION_LIMIT ({limit}); games will be shorter')

    flask_app.cli.add_command(check_questions_command)

    return flask_app
