"""Group standings: player ladder, pairings, head-to-head, recalculation."""
import logging

from flask import Blueprint, request, jsonify
from backend.app import db, socketio
from backend.models import Group, GroupPlayer, PartnerStats, PairingMatchup
from backend.services.aggregates import pair_key
from backend.services.recalculator import RecalculationError
from backend.services.results import stats_services
from backend.services.stores import StoreError
from backend.time_utils import utcnow_naive

logger = logging.getLogger(__name__)

groups_bp = Blueprint('groups', __name__)

MIN_GAMES_QUALIFIED = 5


def _get_group_or_404(group_id):
    group = db.session.get(Group, group_id)
    if not group:
        return None, (jsonify({'error': 'Group not found'}), 404)
    return group, None


def emit_stats_update(group_id, reason=''):
    socketio.emit('stats_update', {
        'group_id': group_id,
        'reason': reason,
        'updated_at': utcnow_naive().isoformat(),
    })


@groups_bp.route('/<int:group_id>/players', methods=['GET'])
def get_player_ladder(group_id):
    group, error = _get_group_or_404(group_id)
    if error:
        return error
    players = GroupPlayer.query.filter_by(group_id=group.id).order_by(
        GroupPlayer.elo_rating.desc(),
        GroupPlayer.wins.desc(),
        GroupPlayer.name.asc(),
    ).all()
    return jsonify({'group': group.to_dict(), 'players': [p.to_dict() for p in players]})


@groups_bp.route('/<int:group_id>/players/<int:player_id>/stats', methods=['GET'])
def get_player_stats(group_id, player_id):
    group, error = _get_group_or_404(group_id)
    if error:
        return error
    try:
        stats = stats_services().player_stats(group.id, player_id)
    except StoreError:
        logger.exception('Loading stats of player %s in group %s failed', player_id, group.id)
        return jsonify({'error': 'Failed to load player stats'}), 500
    if stats is None:
        return jsonify({'error': 'Player not found'}), 404
    return jsonify({'stats': stats})


@groups_bp.route('/<int:group_id>/pairings', methods=['GET'])
def get_pairings(group_id):
    group, error = _get_group_or_404(group_id)
    if error:
        return error
    rows = PartnerStats.query.filter(
        PartnerStats.group_id == group.id,
        PartnerStats.total_games > 0,
    ).order_by(
        PartnerStats.elo_rating.desc(),
        PartnerStats.wins.desc(),
    ).all()

    pairings = []
    for row in rows:
        data = row.to_dict()
        data['qualified'] = (row.total_games or 0) >= MIN_GAMES_QUALIFIED
        pairings.append(data)
    # qualified pairs first, keeping rating order within each bucket
    pairings.sort(key=lambda item: not item['qualified'])
    return jsonify({'pairings': pairings, 'min_games_qualified': MIN_GAMES_QUALIFIED})


@groups_bp.route('/<int:group_id>/matchups', methods=['GET'])
def get_matchups(group_id):
    group, error = _get_group_or_404(group_id)
    if error:
        return error

    player1_id = request.args.get('player1_id', type=int)
    player2_id = request.args.get('player2_id', type=int)
    query = PairingMatchup.query.filter(
        PairingMatchup.group_id == group.id,
        PairingMatchup.total_games > 0,
    )

    perspective = None
    if player1_id or player2_id:
        if not player1_id or not player2_id or player1_id == player2_id:
            return jsonify({'error': 'player1_id and player2_id must name two different players'}), 400
        perspective = pair_key(player1_id, player2_id)
        query = query.filter(db.or_(
            db.and_(PairingMatchup.team1_player1_id == perspective[0],
                    PairingMatchup.team1_player2_id == perspective[1]),
            db.and_(PairingMatchup.team2_player1_id == perspective[0],
                    PairingMatchup.team2_player2_id == perspective[1]),
        ))

    rows = query.order_by(PairingMatchup.total_games.desc(), PairingMatchup.id.asc()).all()
    return jsonify({'matchups': [row.to_dict(perspective=perspective) for row in rows]})


@groups_bp.route('/<int:group_id>/recalculate', methods=['POST'])
def recalculate(group_id):
    group, error = _get_group_or_404(group_id)
    if error:
        return error
    try:
        summary = stats_services().recalculate_group(group.id)
    except RecalculationError as exc:
        return jsonify({
            'error': 'Recalculation failed; retry to rebuild the group',
            'phase': exc.phase.value,
        }), 500
    emit_stats_update(group.id, reason='recalculated')
    return jsonify({'summary': summary.to_dict()})
