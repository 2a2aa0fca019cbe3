"""Counter, streak and key arithmetic for player, partnership and matchup aggregates.

Apply and reverse are only symmetric for the countable fields (wins, losses,
total_games, points). Reverse leaves rating and streak fields as last
computed; a group recalculation is what restores them exactly.
"""
from collections import namedtuple

WINNING_TEAMS = ('A', 'B')
SUPPORTED_TEAM_SIZES = (1, 2)

Outcome = namedtuple('Outcome', [
    'team_a', 'team_b', 'winning_team', 'team_a_score', 'team_b_score',
])
MatchupKey = namedtuple('MatchupKey', ['side1', 'side2', 'swapped'])


def completed_outcome(result):
    """Outcome for a finished game with a supported roster shape, else None."""
    winning_team = result.winning_team
    if winning_team not in WINNING_TEAMS:
        return None
    team_a = list(result.team_a_ids)
    team_b = list(result.team_b_ids)
    if len(team_a) not in SUPPORTED_TEAM_SIZES or len(team_a) != len(team_b):
        return None
    return Outcome(team_a, team_b, winning_team, result.team_a_score, result.team_b_score)


def pair_key(player_a, player_b):
    """Canonical (low, high) key for an unordered partnership."""
    return (player_a, player_b) if player_a < player_b else (player_b, player_a)


def matchup_key(team_a_key, team_b_key):
    """Order two partnership keys; swapped means raw team A is stored as side 2."""
    if team_a_key < team_b_key:
        return MatchupKey(team_a_key, team_b_key, False)
    return MatchupKey(team_b_key, team_a_key, True)


def side1_won(key, winning_team):
    return winning_team == ('B' if key.swapped else 'A')


def next_streak(current, won):
    current = current or 0
    if won:
        return current + 1 if current >= 0 else 1
    return current - 1 if current <= 0 else -1


def apply_outcome(row, won, rating, points_for=None, points_against=None):
    """Record one game on a player or partnership row."""
    row.wins = (row.wins or 0) + (1 if won else 0)
    row.losses = (row.losses or 0) + (0 if won else 1)
    row.total_games = row.wins + row.losses
    row.elo_rating = rating
    row.current_streak = next_streak(row.current_streak, won)
    row.best_win_streak = max(row.best_win_streak or 0, row.current_streak)
    if points_for is not None:
        row.points_for = (row.points_for or 0) + points_for
    if points_against is not None:
        row.points_against = (row.points_against or 0) + points_against
    return row


def reverse_outcome(row, won, points_for=None, points_against=None):
    """Undo the countable part of apply_outcome, floored at zero."""
    if won:
        row.wins = max(0, (row.wins or 0) - 1)
    else:
        row.losses = max(0, (row.losses or 0) - 1)
    row.wins = row.wins or 0
    row.losses = row.losses or 0
    row.total_games = row.wins + row.losses
    if points_for is not None:
        row.points_for = max(0, (row.points_for or 0) - points_for)
    if points_against is not None:
        row.points_against = max(0, (row.points_against or 0) - points_against)
    return row


def apply_matchup(row, side1_won_game):
    if side1_won_game:
        row.team1_wins = (row.team1_wins or 0) + 1
    else:
        row.team2_wins = (row.team2_wins or 0) + 1
    row.team1_wins = row.team1_wins or 0
    row.team2_wins = row.team2_wins or 0
    row.total_games = row.team1_wins + row.team2_wins
    return row


def reverse_matchup(row, side1_won_game):
    if side1_won_game:
        row.team1_wins = max(0, (row.team1_wins or 0) - 1)
    else:
        row.team2_wins = max(0, (row.team2_wins or 0) - 1)
    row.team1_wins = row.team1_wins or 0
    row.team2_wins = row.team2_wins or 0
    row.total_games = row.team1_wins + row.team2_wins
    return row


def team_points(outcome, team):
    """(points_for, points_against) for team 'A' or 'B'; None where unscored."""
    if team == 'A':
        return outcome.team_a_score, outcome.team_b_score
    return outcome.team_b_score, outcome.team_a_score
