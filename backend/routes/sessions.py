"""Session game log: record, correct and delete game results."""
from flask import Blueprint, request, jsonify
from backend.app import db
from backend.models import PlaySession, SessionPlayer
from backend.routes.groups import emit_stats_update
from backend.services.results import stats_services

sessions_bp = Blueprint('sessions', __name__)

_ALLOWED_WINNERS = {'A', 'B'}
_TEAM_SIZES = {1, 2}
_MIN_SCORE = 0
_MAX_SCORE = 99


def _parse_team_ids(raw_ids):
    if not isinstance(raw_ids, list):
        return None
    ids = []
    for raw in raw_ids:
        if isinstance(raw, bool):
            return None
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return None
        if value <= 0:
            return None
        ids.append(value)
    return ids


def _parse_winner(raw_value):
    if raw_value is None:
        return None, None
    winner = str(raw_value).strip().upper()
    if not winner:
        return None, None
    if winner not in _ALLOWED_WINNERS:
        return None, 'winning_team must be "A", "B" or null'
    return winner, None


def _parse_score(raw_value, field):
    if raw_value is None or raw_value == '':
        return None, None
    if isinstance(raw_value, bool):
        return None, f'{field} must be an integer'
    try:
        score = int(raw_value)
    except (TypeError, ValueError):
        return None, f'{field} must be an integer'
    if score < _MIN_SCORE or score > _MAX_SCORE:
        return None, f'{field} must be between {_MIN_SCORE} and {_MAX_SCORE}'
    return score, None


def _validate_teams(session, team_a, team_b):
    if len(team_a) not in _TEAM_SIZES or len(team_a) != len(team_b):
        return 'Teams must both have 1 (singles) or 2 (doubles) players'
    all_ids = team_a + team_b
    if len(set(all_ids)) != len(all_ids):
        return 'Duplicate players across teams'
    known = {
        sp.id for sp in SessionPlayer.query.filter(
            SessionPlayer.session_id == session.id,
            SessionPlayer.id.in_(all_ids),
        ).all()
    }
    if known != set(all_ids):
        return 'All players must belong to this session'
    return None


def _parse_game_payload(data, partial=False):
    """Return (fields, error) for a create (partial=False) or update payload."""
    fields = {}
    for team_field in ('team_a', 'team_b'):
        if team_field in data or not partial:
            ids = _parse_team_ids(data.get(team_field))
            if ids is None:
                return None, f'{team_field} must be a list of session player IDs'
            fields[team_field] = ids

    if 'winning_team' in data:
        winner, error = _parse_winner(data.get('winning_team'))
        if error:
            return None, error
        fields['winning_team'] = winner

    for score_field in ('team_a_score', 'team_b_score'):
        if score_field in data:
            score, error = _parse_score(data.get(score_field), score_field)
            if error:
                return None, error
            fields[score_field] = score
    return fields, None


def _get_session_or_404(session_id):
    session = db.session.get(PlaySession, session_id)
    if not session:
        return None, (jsonify({'error': 'Session not found'}), 404)
    return session, None


def _notify(session, reason):
    if session.group_id is not None:
        emit_stats_update(session.group_id, reason=reason)


@sessions_bp.route('/<int:session_id>/games', methods=['GET'])
def get_games(session_id):
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    games = stats_services().results.for_session(session.id)
    return jsonify({'games': [game.to_dict() for game in games]})


@sessions_bp.route('/<int:session_id>/games', methods=['POST'])
def create_game(session_id):
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400

    fields, error = _parse_game_payload(data)
    if error:
        return jsonify({'error': error}), 400
    setup_error = _validate_teams(session, fields['team_a'], fields['team_b'])
    if setup_error:
        return jsonify({'error': setup_error}), 400

    game_number = None
    if data.get('game_number') is not None:
        try:
            game_number = int(data.get('game_number'))
        except (TypeError, ValueError):
            return jsonify({'error': 'game_number must be an integer'}), 400
        if game_number <= 0:
            return jsonify({'error': 'game_number must be positive'}), 400

    game, stats = stats_services().record_result(
        session.id, fields['team_a'], fields['team_b'],
        winning_team=fields.get('winning_team'),
        team_a_score=fields.get('team_a_score'),
        team_b_score=fields.get('team_b_score'),
        game_number=game_number,
    )
    _notify(session, 'game_recorded')
    return jsonify({'game': game.to_dict(), 'stats': stats}), 201


@sessions_bp.route('/<int:session_id>/games/<int:game_id>', methods=['PATCH', 'PUT'])
def update_game(session_id, game_id):
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400

    fields, error = _parse_game_payload(data, partial=True)
    if error:
        return jsonify({'error': error}), 400
    if not fields:
        return jsonify({'error': 'No fields to update'}), 400

    services = stats_services()
    if 'team_a' in fields or 'team_b' in fields:
        existing = services.results.get(session.id, game_id)
        if existing is None:
            return jsonify({'error': 'Game not found'}), 404
        setup_error = _validate_teams(
            session,
            fields.get('team_a', existing.team_a_ids),
            fields.get('team_b', existing.team_b_ids),
        )
        if setup_error:
            return jsonify({'error': setup_error}), 400

    updated = services.update_result(session.id, game_id, **fields)
    if updated is None:
        return jsonify({'error': 'Game not found'}), 404
    game, stats = updated
    _notify(session, 'game_updated')
    return jsonify({'game': game.to_dict(), 'stats': stats})


@sessions_bp.route('/<int:session_id>/games/<int:game_id>', methods=['DELETE'])
def delete_game(session_id, game_id):
    session, error = _get_session_or_404(session_id)
    if error:
        return error
    deleted, stats = stats_services().delete_result(session.id, game_id)
    if not deleted:
        return jsonify({'error': 'Game not found'}), 404
    _notify(session, 'game_deleted')
    return jsonify({'message': 'Game deleted', 'stats': stats})
