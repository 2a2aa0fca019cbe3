import logging

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_socketio import SocketIO
from flask_cors import CORS
from sqlalchemy import inspect, text
from backend.config import config

db = SQLAlchemy()
socketio = SocketIO()

_AGGREGATE_COLUMNS = (
    ('current_streak', 'INTEGER NOT NULL DEFAULT 0'),
    ('best_win_streak', 'INTEGER NOT NULL DEFAULT 0'),
    ('points_for', 'INTEGER NOT NULL DEFAULT 0'),
    ('points_against', 'INTEGER NOT NULL DEFAULT 0'),
)


def _parse_allowed_origins(raw_origins):
    if not raw_origins:
        return '*'

    if isinstance(raw_origins, (list, tuple, set)):
        cleaned = [origin for origin in raw_origins if origin]
        return cleaned or '*'

    raw_text = str(raw_origins).strip()
    if not raw_text or raw_text == '*':
        return '*'

    origins = [origin.strip() for origin in raw_text.split(',') if origin.strip()]
    return origins or '*'


def _configure_logging(level_name):
    logger = logging.getLogger('backend')
    logger.setLevel(getattr(logging, str(level_name or 'INFO').upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s [%(name)s] %(message)s'
        ))
        logger.addHandler(handler)


def _run_lightweight_migrations():
    """Bring databases created before streak/points/pairing ratings up to date."""
    inspector = inspect(db.engine)
    table_names = inspector.get_table_names()
    if 'group_player' not in table_names:
        return

    player_columns = {col['name'] for col in inspector.get_columns('group_player')}
    partner_columns = (
        {col['name'] for col in inspector.get_columns('partner_stats')}
        if 'partner_stats' in table_names else set()
    )
    with db.engine.begin() as connection:
        for name, ddl in _AGGREGATE_COLUMNS:
            if name not in player_columns:
                connection.execute(text(f'ALTER TABLE group_player ADD COLUMN {name} {ddl}'))

        if 'partner_stats' in table_names:
            if 'elo_rating' not in partner_columns:
                connection.execute(text(
                    'ALTER TABLE partner_stats ADD COLUMN elo_rating INTEGER NOT NULL DEFAULT 1500'
                ))
            for name, ddl in _AGGREGATE_COLUMNS:
                if name not in partner_columns:
                    connection.execute(text(f'ALTER TABLE partner_stats ADD COLUMN {name} {ddl}'))
            connection.execute(text(
                'CREATE INDEX IF NOT EXISTS ix_partner_stats_group_wins '
                'ON partner_stats (group_id, wins)'
            ))

        if 'pairing_matchup' in table_names:
            connection.execute(text(
                'CREATE INDEX IF NOT EXISTS ix_pairing_matchup_group '
                'ON pairing_matchup (group_id)'
            ))

        if 'game_result' in table_names:
            connection.execute(text(
                'CREATE INDEX IF NOT EXISTS ix_game_result_created '
                'ON game_result (created_at, id)'
            ))


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    _configure_logging(app.config.get('LOG_LEVEL'))

    allowed_origins = _parse_allowed_origins(app.config.get('CORS_ALLOWED_ORIGINS', '*'))
    if str(config_name).strip().lower() == 'production' and allowed_origins == '*':
        raise RuntimeError('CORS_ALLOWED_ORIGINS must be explicitly set in production')

    db.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
    )
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})

    from backend.services.results import build_stats_services
    app.extensions['stats_services'] = build_stats_services(app.config)

    from backend.routes.groups import groups_bp
    from backend.routes.sessions import sessions_bp

    app.register_blueprint(groups_bp, url_prefix='/api/groups')
    app.register_blueprint(sessions_bp, url_prefix='/api/sessions')

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'})

    with app.app_context():
        from backend import models  # noqa: F401
        db.create_all()
        _run_lightweight_migrations()

    return app
