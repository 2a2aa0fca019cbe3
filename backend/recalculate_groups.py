"""CLI utility to rebuild group ratings and stats from the game history."""

import argparse
import json

from backend.app import create_app, db
from backend.models import Group
from backend.services.recalculator import RecalculationError
from backend.services.results import stats_services


def _build_parser():
    parser = argparse.ArgumentParser(
        description='Reset and replay every completed game of a group to rebuild its stats.',
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        '--group',
        type=int,
        action='append',
        help='Group ID to recalculate. Repeat to recalculate several groups.',
    )
    target.add_argument(
        '--all',
        action='store_true',
        help='Recalculate every group.',
    )
    parser.add_argument(
        '--env',
        default='development',
        choices=['development', 'testing', 'production'],
        help='App config environment to use (default: development).',
    )
    return parser


def recalculate_groups(group_ids):
    """Recalculate each group in turn; one failure does not stop the rest."""
    services = stats_services()
    summaries = []
    failed = []
    for group_id in group_ids:
        if db.session.get(Group, group_id) is None:
            failed.append({'group_id': group_id, 'error': 'Group not found'})
            continue
        try:
            summaries.append(services.recalculate_group(group_id).to_dict())
        except RecalculationError as exc:
            failed.append({'group_id': group_id, 'phase': exc.phase.value, 'error': str(exc)})
    return {'recalculated': summaries, 'failed': failed}


def all_group_ids():
    return [group_id for (group_id,) in db.session.query(Group.id).order_by(Group.id.asc()).all()]


def main(argv=None):
    args = _build_parser().parse_args(argv)
    app = create_app(args.env)

    with app.app_context():
        group_ids = all_group_ids() if args.all else args.group
        result = recalculate_groups(group_ids)
        print(json.dumps(result, indent=2))
        return 1 if result['failed'] else 0


if __name__ == '__main__':
    raise SystemExit(main())
