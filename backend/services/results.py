"""Result log writes and the stats updates that follow them.

The result write is the primary operation: it is committed first and its
errors propagate. The aggregate update afterwards is best-effort. A failure
there is logged and left for the next group recalculation to repair.

Editing or deleting a result that has later completed results in the same
group makes incremental updates diverge from a replay of the history, so
those writes trigger a full recalculation when RECALCULATE_ON_HISTORICAL_EDIT
is enabled.
"""
import logging
from collections import namedtuple

from flask import current_app

from backend.services.engine import StatsEngine
from backend.services.identity import build_resolver
from backend.services.player_stats import PlayerStatsReader
from backend.services.recalculator import RecalculationError, Recalculator
from backend.services.stores import (
    AggregateStore, MappingStore, MatchupLedger, ResultLog, StoreError,
)

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ('team_a', 'team_b', 'winning_team', 'team_a_score', 'team_b_score')

ResultSnapshot = namedtuple('ResultSnapshot', [
    'id', 'winning_team', 'team_a_ids', 'team_b_ids',
    'team_a_score', 'team_b_score', 'created_at',
])


def snapshot_of(result):
    return ResultSnapshot(
        result.id, result.winning_team, result.team_a_ids, result.team_b_ids,
        result.team_a_score, result.team_b_score, result.created_at,
    )


def _stats_fields(snapshot):
    return (
        snapshot.winning_team, snapshot.team_a_ids, snapshot.team_b_ids,
        snapshot.team_a_score, snapshot.team_b_score,
    )


class StatsServices:
    def __init__(self, results, mappings, aggregates, ledger, engine, recalculator,
                 recalculate_on_historical_edit=True):
        self.results = results
        self.mappings = mappings
        self.aggregates = aggregates
        self.ledger = ledger
        self.engine = engine
        self.recalculator = recalculator
        self.recalculate_on_historical_edit = recalculate_on_historical_edit

    def apply_result(self, group_id, result):
        return self.engine.apply_result(group_id, result)

    def reverse_result(self, group_id, previous_result):
        return self.engine.reverse_result(group_id, previous_result)

    def recalculate_group(self, group_id):
        return self.recalculator.recalculate_group(group_id)

    def player_stats(self, group_id, player_id):
        return PlayerStatsReader(self.results, self.mappings, self.engine.resolver).for_player(
            group_id, player_id,
        )

    def record_result(self, session_id, team_a, team_b, winning_team=None,
                      team_a_score=None, team_b_score=None, game_number=None):
        """Create a result; returns (result, stats) where stats describes the aggregate update."""
        group_id = self.results.group_id_for_session(session_id)
        result = self.results.create(
            session_id, team_a, team_b,
            winning_team=winning_team,
            team_a_score=team_a_score,
            team_b_score=team_b_score,
            game_number=game_number,
        )
        stats = None
        if group_id is not None and result.winning_team:
            stats = self._best_effort(f'recording game {result.id}', self._apply, group_id, result)
        return result, stats

    def update_result(self, session_id, game_id, **changes):
        """Update a result; returns (result, stats) or None if the result does not exist."""
        result = self.results.get(session_id, game_id)
        if result is None:
            return None
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f'Cannot update fields: {", ".join(sorted(unknown))}')

        group_id = self.results.group_id_for_session(session_id)
        previous = snapshot_of(result)
        historical = group_id is not None and self._is_historical(group_id, result)

        self.results.update(result, **changes)
        current = snapshot_of(result)

        stats = None
        played = previous.winning_team is not None or current.winning_team is not None
        if group_id is not None and played and _stats_fields(current) != _stats_fields(previous):
            if historical and self.recalculate_on_historical_edit:
                stats = self._best_effort(f'editing game {game_id}', self._recalculate, group_id)
            else:
                stats = self._best_effort(
                    f'editing game {game_id}', self._replace, group_id, previous, result,
                )
        return result, stats

    def delete_result(self, session_id, game_id):
        """Delete a result; returns (deleted, stats)."""
        result = self.results.get(session_id, game_id)
        if result is None:
            return False, None

        group_id = self.results.group_id_for_session(session_id)
        previous = snapshot_of(result)
        completed = previous.winning_team is not None
        historical = completed and group_id is not None and self._is_historical(group_id, result)

        self.results.delete(result)

        stats = None
        if group_id is not None and completed:
            if historical and self.recalculate_on_historical_edit:
                stats = self._best_effort(f'deleting game {game_id}', self._recalculate, group_id)
            else:
                stats = self._best_effort(
                    f'deleting game {game_id}', self._reverse, group_id, previous,
                )
        return True, stats

    def _apply(self, group_id, result):
        report = self.engine.apply_result(group_id, result)
        return {'applied': report.to_dict() if report else None}

    def _reverse(self, group_id, previous):
        report = self.engine.reverse_result(group_id, previous)
        return {'reversed': report.to_dict() if report else None}

    def _replace(self, group_id, previous, result):
        stats = {}
        if previous.winning_team:
            stats.update(self._reverse(group_id, previous))
        if result.winning_team:
            stats.update(self._apply(group_id, result))
        return stats

    def _recalculate(self, group_id):
        return {'recalculated': self.recalculator.recalculate_group(group_id).to_dict()}

    def _is_historical(self, group_id, result):
        try:
            return self.results.has_later_completed(group_id, result)
        except StoreError:
            logger.exception('Could not check history position of game %s', result.id)
            return False

    @staticmethod
    def _best_effort(description, func, *args):
        try:
            return func(*args)
        except (StoreError, RecalculationError):
            logger.exception('Stats update after %s failed; recalculate the group to repair', description)
            return {'error': 'stats update failed'}


def build_stats_services(config):
    retries = config.get('AGGREGATE_WRITE_RETRIES', 3)
    results = ResultLog()
    mappings = MappingStore()
    aggregates = AggregateStore(retries=retries)
    ledger = MatchupLedger(retries=retries)
    resolver = build_resolver(config.get('IDENTITY_RESOLUTION', 'name_match'), mappings)
    engine = StatsEngine(aggregates, ledger, resolver)
    recalculator = Recalculator(results, aggregates, ledger, engine, mappings)
    return StatsServices(
        results, mappings, aggregates, ledger, engine, recalculator,
        recalculate_on_historical_edit=config.get('RECALCULATE_ON_HISTORICAL_EDIT', True),
    )


def stats_services():
    return current_app.extensions['stats_services']
