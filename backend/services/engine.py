"""Apply and reverse completed game results against group aggregates.

apply_result and reverse_result return None when a result is not applicable
(no winner, unsupported roster shape) or when any roster member cannot be
resolved to a distinct group identity. Otherwise they return a ResultReport.

In the default best-effort mode a store failure abandons only the entity it
happened on; siblings still update and the failure is recorded on the report.
strict=True lets StoreError propagate instead (used by recalculation).
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from backend.services.aggregates import (
    completed_outcome, matchup_key, pair_key, side1_won, team_points,
)
from backend.services.elo import doubles_rating_changes
from backend.services.stores import StoreError

logger = logging.getLogger(__name__)


@dataclass
class ResultReport:
    action: str  # apply, reverse
    group_id: int
    result_id: int
    winning_team: str
    team_a: list
    team_b: list
    player_changes: list = field(default_factory=list)
    partnership_changes: list = field(default_factory=list)
    matchup: Optional[tuple] = None
    failures: list = field(default_factory=list)

    @property
    def player_ids(self):
        return self.team_a + self.team_b

    @property
    def complete(self):
        return not self.failures

    def to_dict(self):
        return {
            'action': self.action,
            'group_id': self.group_id,
            'result_id': self.result_id,
            'winning_team': self.winning_team,
            'team_a': self.team_a,
            'team_b': self.team_b,
            'player_changes': self.player_changes,
            'partnership_changes': self.partnership_changes,
            'matchup': {
                'side1': list(self.matchup.side1),
                'side2': list(self.matchup.side2),
                'swapped': self.matchup.swapped,
            } if self.matchup else None,
            'failures': self.failures,
        }


class StatsEngine:
    def __init__(self, aggregates, ledger, resolver):
        self.aggregates = aggregates
        self.ledger = ledger
        self.resolver = resolver

    def apply_result(self, group_id, result, strict=False):
        prepared = self._prepare(group_id, result, strict)
        if prepared is None:
            return None
        outcome, team_a, team_b = prepared
        report = ResultReport('apply', group_id, result.id, outcome.winning_team, team_a, team_b)

        ratings = self._guarded(report, strict, 'rating snapshot',
                                self.aggregates.player_ratings, group_id, team_a + team_b)
        if ratings is None:
            return report

        deltas = dict(zip('AB', doubles_rating_changes(
            [ratings[pid] for pid in team_a],
            [ratings[pid] for pid in team_b],
            outcome.winning_team,
        )))

        for team, members in (('A', team_a), ('B', team_b)):
            won = outcome.winning_team == team
            points_for, points_against = team_points(outcome, team)
            for player_id in members:
                changed = self._guarded(
                    report, strict, f'player {player_id}',
                    self.aggregates.apply_player,
                    group_id, player_id, won, deltas[team], points_for, points_against,
                )
                if changed is not None:
                    old, new = changed
                    report.player_changes.append({
                        'group_player_id': player_id, 'team': team,
                        'old_rating': old, 'new_rating': new, 'change': new - old,
                    })

        if len(team_a) == 2:
            self._apply_doubles(report, outcome, strict)
        return report

    def reverse_result(self, group_id, previous_result, strict=False):
        prepared = self._prepare(group_id, previous_result, strict)
        if prepared is None:
            return None
        outcome, team_a, team_b = prepared
        report = ResultReport('reverse', group_id, previous_result.id,
                              outcome.winning_team, team_a, team_b)

        for team, members in (('A', team_a), ('B', team_b)):
            won = outcome.winning_team == team
            points_for, points_against = team_points(outcome, team)
            for player_id in members:
                self._guarded(report, strict, f'player {player_id}',
                              self.aggregates.reverse_player,
                              group_id, player_id, won, points_for, points_against)

        if len(team_a) == 2:
            keys = {'A': pair_key(*team_a), 'B': pair_key(*team_b)}
            for team, key in keys.items():
                points_for, points_against = team_points(outcome, team)
                self._guarded(report, strict, f'partnership {key}',
                              self.aggregates.reverse_partnership,
                              group_id, key, outcome.winning_team == team,
                              points_for, points_against)
            report.matchup = matchup_key(keys['A'], keys['B'])
            self._guarded(report, strict, 'matchup', self.ledger.reverse, group_id,
                          report.matchup, side1_won(report.matchup, outcome.winning_team))
        return report

    def _apply_doubles(self, report, outcome, strict):
        group_id = report.group_id
        keys = {'A': pair_key(*report.team_a), 'B': pair_key(*report.team_b)}

        pair_ratings = {}
        for team, key in keys.items():
            rating = self._guarded(report, strict, f'partnership {key} rating',
                                   self.aggregates.partnership_rating, group_id, key)
            if rating is not None:
                pair_ratings[team] = rating

        if len(pair_ratings) == 2:
            for team, key in keys.items():
                opponent = 'B' if team == 'A' else 'A'
                points_for, points_against = team_points(outcome, team)
                changed = self._guarded(
                    report, strict, f'partnership {key}',
                    self.aggregates.apply_partnership,
                    group_id, key, pair_ratings[opponent],
                    outcome.winning_team == team, points_for, points_against,
                )
                if changed is not None:
                    old, new = changed
                    report.partnership_changes.append({
                        'player1_id': key[0], 'player2_id': key[1], 'team': team,
                        'old_rating': old, 'new_rating': new, 'change': new - old,
                    })

        report.matchup = matchup_key(keys['A'], keys['B'])
        self._guarded(report, strict, 'matchup', self.ledger.apply, group_id,
                      report.matchup, side1_won(report.matchup, outcome.winning_team))

    def _prepare(self, group_id, result, strict):
        outcome = completed_outcome(result)
        if outcome is None:
            logger.debug('Skipping game %s: no winner or unsupported roster', result.id)
            return None

        try:
            resolved = self.resolver.resolve_roster(group_id, outcome.team_a + outcome.team_b)
        except StoreError:
            if strict:
                raise
            logger.exception('Could not resolve roster of game %s in group %s', result.id, group_id)
            return None

        size = len(outcome.team_a)
        if any(player_id is None for player_id in resolved):
            missing = sum(1 for player_id in resolved if player_id is None)
            logger.info('Skipping game %s: %d roster member(s) unresolved in group %s',
                        result.id, missing, group_id)
            return None
        if len(set(resolved)) != len(resolved):
            logger.info('Skipping game %s: roster resolves to duplicate identities', result.id)
            return None
        return outcome, resolved[:size], resolved[size:]

    @staticmethod
    def _guarded(report, strict, description, func, *args):
        try:
            return func(*args)
        except StoreError:
            if strict:
                raise
            logger.exception('Abandoned %s update for game %s in group %s',
                             description, report.result_id, report.group_id)
            report.failures.append(description)
            return None
