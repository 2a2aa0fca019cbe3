"""
ELO rating engine for group play: individual players and doubles partnerships.

- Start: 1500
- K-factor: 32 for everyone
- Floor: 100, no ceiling
- Formula: E = 1 / (1 + 10^((opponent - rating) / 400))
           R' = round(R + K * (actual - E))
- Doubles: the team rating is the mean of both members' ratings. The team is
  rated as a single player against the opposing team, and the resulting team
  delta is added unchanged to each member's personal rating. Both partners
  therefore move by the same number of points whatever their own ratings.
- Partnerships also carry their own rating, which moves with the same formula
  against the opposing partnership's rating.
"""
import math

DEFAULT_RATING = 1500
K_FACTOR = 32
RATING_FLOOR = 100


def expected_score(rating, opponent_rating):
    """Win probability for ``rating`` against ``opponent_rating``."""
    return 1.0 / (1.0 + math.pow(10, (opponent_rating - rating) / 400.0))


def new_rating(current, opponent, won, k=K_FACTOR):
    """Rating after one game, rounded and clamped to the floor."""
    actual = 1.0 if won else 0.0
    updated = _round_half_up(current + k * (actual - expected_score(current, opponent)))
    return max(RATING_FLOOR, updated)


def team_rating(ratings):
    ratings = list(ratings)
    if not ratings:
        return DEFAULT_RATING
    return sum(ratings) / len(ratings)


def team_rating_change(team_ratings, opponent_ratings, won):
    """Scalar delta a team earns, computed on the averaged team ratings.

    The delta is not rounded: a team average of 1450.5 that becomes 1473
    moves each member by 22.5, and member_rating() rounds the result.
    """
    own = team_rating(team_ratings)
    opponent = team_rating(opponent_ratings)
    return new_rating(own, opponent, won) - own


def member_rating(current, delta):
    return max(RATING_FLOOR, _round_half_up(current + delta))


def doubles_rating_changes(team_a_ratings, team_b_ratings, winning_team):
    """Return (delta_a, delta_b) for a finished game between two teams.

    Works for singles too: a one-player team's rating is the player's rating.
    """
    a_won = winning_team == 'A'
    delta_a = team_rating_change(team_a_ratings, team_b_ratings, a_won)
    delta_b = team_rating_change(team_b_ratings, team_a_ratings, not a_won)
    return delta_a, delta_b


def _round_half_up(value):
    # Math.round semantics: .5 always rounds toward +infinity
    return int(math.floor(value + 0.5))
