"""Rebuild a group's aggregates from its complete result history.

Resetting puts every player back to defaults and drops partnership and
matchup rows. Replaying then feeds every completed result, in creation
order, through the same apply path that live updates use. A failure in
either phase leaves the group half rebuilt; the whole run is safe to retry
because it always starts from the reset.
"""
import enum
import logging
from dataclasses import dataclass, field

from backend.services.stores import StoreError

logger = logging.getLogger(__name__)


class RecalculationPhase(enum.Enum):
    RESETTING = 'resetting'
    REPLAYING = 'replaying'
    DONE = 'done'


class RecalculationError(Exception):
    def __init__(self, group_id, phase, message=None):
        self.group_id = group_id
        self.phase = phase
        super().__init__(message or f'Recalculation of group {group_id} failed while {phase.value}')


@dataclass
class RecalculationSummary:
    group_id: int
    players_reset: int = 0
    games_processed: int = 0
    players_updated: list = field(default_factory=list)
    partnerships: int = 0
    matchups: int = 0

    def to_dict(self):
        return {
            'group_id': self.group_id,
            'players_reset': self.players_reset,
            'games_processed': self.games_processed,
            'players_updated': self.players_updated,
            'partnerships': self.partnerships,
            'matchups': self.matchups,
        }


class Recalculator:
    def __init__(self, results, aggregates, ledger, engine, mappings):
        self.results = results
        self.aggregates = aggregates
        self.ledger = ledger
        self.engine = engine
        self.mappings = mappings

    def recalculate_group(self, group_id):
        summary = RecalculationSummary(group_id=group_id)
        phase = RecalculationPhase.RESETTING
        logger.info('Recalculating group %s: %s', group_id, phase.value)
        try:
            summary.players_reset = self.aggregates.reset_group(group_id)
            self.ledger.clear_group(group_id)

            phase = RecalculationPhase.REPLAYING
            completed = self.results.completed_for_group(group_id)
            logger.info('Recalculating group %s: %s %d completed games',
                        group_id, phase.value, len(completed))

            touched = {}
            partnerships = set()
            matchups = set()
            for result in completed:
                report = self.engine.apply_result(group_id, result, strict=True)
                if report is None:
                    continue
                summary.games_processed += 1
                for player_id in report.player_ids:
                    touched.setdefault(player_id, None)
                for change in report.partnership_changes:
                    partnerships.add((change['player1_id'], change['player2_id']))
                if report.matchup is not None:
                    matchups.add((report.matchup.side1, report.matchup.side2))

            names = {gp.id: gp.name for gp in self.mappings.group_identities(group_id)}
            summary.players_updated = [names.get(pid, str(pid)) for pid in touched]
            summary.partnerships = len(partnerships)
            summary.matchups = len(matchups)
        except StoreError as exc:
            logger.exception('Recalculation of group %s failed while %s', group_id, phase.value)
            raise RecalculationError(group_id, phase) from exc

        logger.info(
            'Recalculating group %s: %s (%d games, %d players updated)',
            group_id, RecalculationPhase.DONE.value,
            summary.games_processed, len(summary.players_updated),
        )
        return summary
