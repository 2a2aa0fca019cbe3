"""SQLAlchemy-backed stores the stats engine reads from and writes to.

Every aggregate mutation touches exactly one row. It holds the row's keyed
lock, re-reads the row with SELECT ... FOR UPDATE, and commits on its own, so
one failing entity never rolls back its siblings.
"""
import json
import logging

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from backend.app import db
from backend.models import (
    GameResult, GroupPlayer, PairingMatchup, PartnerStats, PlaySession, SessionPlayer,
)
from backend.services.aggregates import (
    apply_matchup, apply_outcome, reverse_matchup, reverse_outcome,
)
from backend.services.elo import DEFAULT_RATING, member_rating, new_rating
from backend.services.locks import aggregate_locks

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A read or write against the aggregate tables or result log failed."""


def _commit(description):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StoreError(f'{description} failed') from exc


class _LockedWriter:
    def __init__(self, retries=3, locks=None):
        self.retries = max(1, int(retries or 1))
        self.locks = locks if locks is not None else aggregate_locks

    def _mutate(self, lock_key, work, description):
        with self.locks.hold(lock_key):
            attempt = 0
            while True:
                attempt += 1
                try:
                    value = work()
                    db.session.commit()
                    return value
                except (OperationalError, IntegrityError) as exc:
                    # lock timeouts, "database is locked", racing lazy inserts
                    db.session.rollback()
                    if attempt >= self.retries:
                        raise StoreError(
                            f'{description} failed after {attempt} attempt(s)'
                        ) from exc
                    logger.warning('%s: retrying after %s (attempt %d)',
                                   description, exc.__class__.__name__, attempt)
                except SQLAlchemyError as exc:
                    db.session.rollback()
                    raise StoreError(f'{description} failed') from exc


class ResultLog:
    """Read/write access to recorded game results."""

    def get(self, session_id, game_id):
        return GameResult.query.filter_by(id=game_id, session_id=session_id).first()

    def for_session(self, session_id):
        return GameResult.query.filter_by(session_id=session_id).order_by(
            GameResult.game_number.asc(), GameResult.id.asc(),
        ).all()

    def completed_for_group(self, group_id):
        """Completed results of every session in the group, in creation order."""
        try:
            return GameResult.query.join(
                PlaySession, GameResult.session_id == PlaySession.id,
            ).filter(
                PlaySession.group_id == group_id,
                GameResult.winning_team.isnot(None),
            ).order_by(
                GameResult.created_at.asc(), GameResult.id.asc(),
            ).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f'loading results of group {group_id} failed') from exc

    def has_later_completed(self, group_id, result):
        later = GameResult.query.join(
            PlaySession, GameResult.session_id == PlaySession.id,
        ).filter(
            PlaySession.group_id == group_id,
            GameResult.winning_team.isnot(None),
            GameResult.id != result.id,
            or_(
                GameResult.created_at > result.created_at,
                and_(GameResult.created_at == result.created_at, GameResult.id > result.id),
            ),
        )
        try:
            return bool(db.session.query(later.exists()).scalar())
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f'checking results after game {result.id} failed') from exc

    def group_id_for_session(self, session_id):
        session = db.session.get(PlaySession, session_id)
        return session.group_id if session else None

    def next_game_number(self, session_id):
        current = db.session.query(db.func.max(GameResult.game_number)).filter(
            GameResult.session_id == session_id,
        ).scalar()
        return (current or 0) + 1

    def create(self, session_id, team_a, team_b, winning_team=None,
               team_a_score=None, team_b_score=None, game_number=None):
        result = GameResult(
            session_id=session_id,
            game_number=game_number or self.next_game_number(session_id),
            team_a=json.dumps(list(team_a)),
            team_b=json.dumps(list(team_b)),
            winning_team=winning_team,
            team_a_score=team_a_score,
            team_b_score=team_b_score,
        )
        db.session.add(result)
        _commit(f'creating game in session {session_id}')
        return result

    def update(self, result, **fields):
        for name in ('team_a', 'team_b'):
            if name in fields:
                fields[name] = json.dumps(list(fields[name]))
        for name, value in fields.items():
            setattr(result, name, value)
        _commit(f'updating game {result.id}')
        return result

    def delete(self, result):
        db.session.delete(result)
        _commit(f'deleting game {result.id}')


class MappingStore:
    """Session roster entries and the group identities they can link to."""

    def session_players(self, session_player_ids):
        ids = {sp_id for sp_id in session_player_ids if sp_id is not None}
        if not ids:
            return {}
        try:
            rows = SessionPlayer.query.filter(SessionPlayer.id.in_(ids)).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError('loading session players failed') from exc
        return {row.id: row for row in rows}

    def group_identities(self, group_id):
        try:
            return GroupPlayer.query.filter_by(group_id=group_id).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f'loading identities of group {group_id} failed') from exc

    def link(self, session_player_id, group_player_id):
        session_player = db.session.get(SessionPlayer, session_player_id)
        if session_player is None or session_player.group_player_id == group_player_id:
            return
        session_player.group_player_id = group_player_id
        _commit(f'linking session player {session_player_id}')


class AggregateStore(_LockedWriter):
    """Per-player and per-partnership counters and ratings."""

    def player_ratings(self, group_id, player_ids):
        ids = set(player_ids)
        try:
            rows = GroupPlayer.query.filter(
                GroupPlayer.group_id == group_id, GroupPlayer.id.in_(ids),
            ).all()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f'loading ratings in group {group_id} failed') from exc
        ratings = {row.id: row.elo_rating for row in rows}
        for player_id in ids:
            if ratings.get(player_id) is None:
                ratings[player_id] = DEFAULT_RATING
        return ratings

    def partnership_rating(self, group_id, key):
        try:
            row = self._partnership(group_id, key).first()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f'loading partnership {key} failed') from exc
        if row is None or row.elo_rating is None:
            return DEFAULT_RATING
        return row.elo_rating

    def apply_player(self, group_id, player_id, won, delta,
                     points_for=None, points_against=None):
        """Record a game for one player; returns (old_rating, new_rating)."""
        def work():
            row = self._locked_player(group_id, player_id)
            old = row.elo_rating if row.elo_rating is not None else DEFAULT_RATING
            updated = member_rating(old, delta)
            apply_outcome(row, won, updated, points_for, points_against)
            return old, updated

        return self._mutate(
            ('player', group_id, player_id), work,
            f'applying result to player {player_id}',
        )

    def reverse_player(self, group_id, player_id, won,
                       points_for=None, points_against=None):
        def work():
            row = self._locked_player(group_id, player_id)
            reverse_outcome(row, won, points_for, points_against)

        self._mutate(
            ('player', group_id, player_id), work,
            f'reversing result for player {player_id}',
        )

    def apply_partnership(self, group_id, key, opponent_rating, won,
                          points_for=None, points_against=None):
        """Record a game for a partnership, creating it on first use."""
        def work():
            row = self._partnership(group_id, key).with_for_update().populate_existing().first()
            if row is None:
                row = PartnerStats(
                    group_id=group_id, player1_id=key[0], player2_id=key[1],
                    elo_rating=DEFAULT_RATING, wins=0, losses=0, total_games=0,
                    current_streak=0, best_win_streak=0, points_for=0, points_against=0,
                )
                db.session.add(row)
            old = row.elo_rating if row.elo_rating is not None else DEFAULT_RATING
            updated = new_rating(old, opponent_rating, won)
            apply_outcome(row, won, updated, points_for, points_against)
            db.session.flush()
            return old, updated

        return self._mutate(
            ('partnership', group_id) + tuple(key), work,
            f'applying result to partnership {key}',
        )

    def reverse_partnership(self, group_id, key, won,
                            points_for=None, points_against=None):
        def work():
            row = self._partnership(group_id, key).with_for_update().populate_existing().first()
            if row is None:
                return False
            reverse_outcome(row, won, points_for, points_against)
            return True

        return self._mutate(
            ('partnership', group_id) + tuple(key), work,
            f'reversing result for partnership {key}',
        )

    def reset_group(self, group_id):
        """Restore every player in the group to defaults and drop partnerships."""
        try:
            reset = GroupPlayer.query.filter_by(group_id=group_id).update({
                'elo_rating': DEFAULT_RATING,
                'wins': 0, 'losses': 0, 'total_games': 0,
                'current_streak': 0, 'best_win_streak': 0,
                'points_for': 0, 'points_against': 0,
            }, synchronize_session=False)
            PartnerStats.query.filter_by(group_id=group_id).delete(synchronize_session='fetch')
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f'resetting aggregates of group {group_id} failed') from exc
        db.session.expire_all()
        return reset

    def _locked_player(self, group_id, player_id):
        row = GroupPlayer.query.filter_by(
            id=player_id, group_id=group_id,
        ).with_for_update().populate_existing().first()
        if row is None:
            raise StoreError(f'player {player_id} does not belong to group {group_id}')
        return row

    @staticmethod
    def _partnership(group_id, key):
        return PartnerStats.query.filter_by(
            group_id=group_id, player1_id=key[0], player2_id=key[1],
        )


class MatchupLedger(_LockedWriter):
    """Head-to-head counters between partnerships."""

    def apply(self, group_id, key, side1_won_game):
        def work():
            row = self._matchup(group_id, key).with_for_update().populate_existing().first()
            if row is None:
                row = PairingMatchup(
                    group_id=group_id,
                    team1_player1_id=key.side1[0], team1_player2_id=key.side1[1],
                    team2_player1_id=key.side2[0], team2_player2_id=key.side2[1],
                    team1_wins=0, team2_wins=0, total_games=0,
                )
                db.session.add(row)
            apply_matchup(row, side1_won_game)
            db.session.flush()

        self._mutate(self._lock_key(group_id, key), work,
                     f'applying matchup {key.side1} vs {key.side2}')

    def reverse(self, group_id, key, side1_won_game):
        def work():
            row = self._matchup(group_id, key).with_for_update().populate_existing().first()
            if row is None:
                return False
            reverse_matchup(row, side1_won_game)
            return True

        return self._mutate(self._lock_key(group_id, key), work,
                            f'reversing matchup {key.side1} vs {key.side2}')

    def clear_group(self, group_id):
        try:
            removed = PairingMatchup.query.filter_by(group_id=group_id).delete(
                synchronize_session='fetch',
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StoreError(f'clearing matchups of group {group_id} failed') from exc
        return removed

    @staticmethod
    def _lock_key(group_id, key):
        return ('matchup', group_id) + tuple(key.side1) + tuple(key.side2)

    @staticmethod
    def _matchup(group_id, key):
        return PairingMatchup.query.filter_by(
            group_id=group_id,
            team1_player1_id=key.side1[0], team1_player2_id=key.side1[1],
            team2_player1_id=key.side2[0], team2_player2_id=key.side2[1],
        )
