from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

DEMO_TEAMS = ['Red', 'Blue', 'Green', 'Yellow']
DEMO_FLAVORS = ['Mozzarella', 'Pepperoni', 'Margherita', 'Chicken', 'Portuguesa']


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    origins = [o.strip() for o in flask_app.config.get('CORS_ORIGINS', '').split(',') if o.strip()]
    CORS(flask_app, supports_credentials=True, origins=origins)
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from roundsync.main import main
    flask_app.register_blueprint(main)

    from roundsync.api.rounds import rounds
    flask_app.register_blueprint(rounds, url_prefix='/api/rounds')

    from roundsync.api.items import items
    flask_app.register_blueprint(items, url_prefix='/api/items')

    from roundsync.api.catalog import catalog
    flask_app.register_blueprint(catalog, url_prefix='/api')

    from roundsync.errors import RoundSyncError

    @flask_app.errorhandler(RoundSyncError)
    def handle_domain_error(exc):
        flask_app.logger.info(f"[rejected] code={exc.code} message={exc.message}")
        return jsonify(exc.to_response()), exc.http_status

    from roundsync.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from roundsync.models import Team, Flavor
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            for name in DEMO_TEAMS:
                db.session.add(Team(name=name))
            for name in DEMO_FLAVORS:
                db.session.add(Flavor(name=name))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
