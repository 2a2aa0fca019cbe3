"""WSGI entrypoint used by Render/Gunicorn."""
import os

from backend.app import create_app
from backend.recalculate_groups import all_group_ids, recalculate_groups


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

if _env_bool('AUTO_RECALCULATE_GROUPS', False):
    with app.app_context():
        result = recalculate_groups(all_group_ids())
        for summary in result['recalculated']:
            print(
                f'Recalculated group {summary["group_id"]}: '
                f'games={summary["games_processed"]} players={len(summary["players_updated"])}'
            )
        for failure in result['failed']:
            print(f'Failed to recalculate group {failure["group_id"]}: {failure["error"]}')
