"""Per-player breakdown derived from a group's completed result log.

Games count exactly when the engine would apply them: a supported roster
shape with every member resolved to a distinct group identity. Results are
walked newest first, so streaks and recent form describe the latest play.
"""
from backend.services.aggregates import completed_outcome, team_points
from backend.time_utils import isoformat_or_none

RECENT_GAMES_LIMIT = 10
RECENT_FORM_LIMIT = 5
UNLUCKY_MARGIN = 2


def _win_pct(wins, total):
    return round(wins / total, 3) if total else 0.0


class _Record:
    def __init__(self, player_id):
        self.player_id = player_id
        self.wins = 0
        self.losses = 0
        self.games = []

    def add(self, won, game):
        if won:
            self.wins += 1
        else:
            self.losses += 1
        self.games.append(game)

    def to_dict(self, names):
        total = self.wins + self.losses
        return {
            'player_id': self.player_id,
            'name': names.get(self.player_id, 'Unknown'),
            'games_played': total,
            'wins': self.wins,
            'losses': self.losses,
            'win_pct': _win_pct(self.wins, total),
            'games': self.games,
        }


def _sorted_records(records, names):
    rows = [record.to_dict(names) for record in records.values()]
    rows.sort(key=lambda row: (-row['win_pct'], -row['games_played'], row['name']))
    return rows


class PlayerStatsReader:
    def __init__(self, results, mappings, resolver):
        self.results = results
        self.mappings = mappings
        self.resolver = resolver

    def for_player(self, group_id, player_id):
        """Detailed stats for one group player, or None if not in the group."""
        identities = self.mappings.group_identities(group_id)
        names = {gp.id: gp.name for gp in identities}
        player = next((gp for gp in identities if gp.id == player_id), None)
        if player is None:
            return None

        # same order as the ladder endpoint
        ladder = sorted(identities, key=lambda gp: (-(gp.elo_rating or 0), -(gp.wins or 0), gp.name))
        rank = [gp.id for gp in ladder].index(player_id) + 1

        wins = losses = points_scored = points_conceded = 0
        current_streak = 0
        streak_open = True
        best_win_streak = run = 0
        sessions = set()
        recent_form = []
        recent_games = []
        unlucky_games = []
        partners = {}
        opponents = {}

        for result in reversed(self.results.completed_for_group(group_id)):
            placed = self._place(group_id, result, player_id)
            if placed is None:
                continue
            outcome, team, own_team, other_team = placed
            won = outcome.winning_team == team
            scored, conceded = team_points(outcome, team)
            game = {
                'game_id': result.id,
                'session_id': result.session_id,
                'team_a': [names.get(pid, 'Unknown') for pid in (own_team if team == 'A' else other_team)],
                'team_b': [names.get(pid, 'Unknown') for pid in (other_team if team == 'A' else own_team)],
                'team_a_score': outcome.team_a_score,
                'team_b_score': outcome.team_b_score,
                'won': won,
                'date': isoformat_or_none(result.created_at),
            }

            sessions.add(result.session_id)
            if won:
                wins += 1
            else:
                losses += 1
            points_scored += scored or 0
            points_conceded += conceded or 0

            if not won and scored is not None and conceded is not None:
                margin = abs(scored - conceded)
                if 1 <= margin <= UNLUCKY_MARGIN:
                    unlucky_games.append(dict(game, margin=margin))

            if len(recent_form) < RECENT_FORM_LIMIT:
                recent_form.append('W' if won else 'L')
            if len(recent_games) < RECENT_GAMES_LIMIT:
                recent_games.append(game)

            if streak_open:
                if current_streak == 0 or (current_streak > 0) == won:
                    current_streak += 1 if won else -1
                else:
                    streak_open = False
            run = run + 1 if won else 0
            best_win_streak = max(best_win_streak, run)

            for partner_id in own_team:
                if partner_id != player_id:
                    partners.setdefault(partner_id, _Record(partner_id)).add(won, game)
            for opponent_id in other_team:
                opponents.setdefault(opponent_id, _Record(opponent_id)).add(won, game)

        total = wins + losses
        return {
            'player_id': player.id,
            'name': player.name,
            'elo_rating': player.elo_rating,
            'rank': rank,
            'total_players': len(identities),
            'total_games': total,
            'wins': wins,
            'losses': losses,
            'win_pct': _win_pct(wins, total),
            'points_scored': points_scored,
            'points_conceded': points_conceded,
            'point_diff': points_scored - points_conceded,
            'sessions_played': len(sessions),
            'recent_form': recent_form,
            'current_streak': current_streak,
            'best_win_streak': best_win_streak,
            'partners': _sorted_records(partners, names),
            'opponents': _sorted_records(opponents, names),
            'recent_games': recent_games,
            'unlucky_games': unlucky_games,
            'unlucky_count': len(unlucky_games),
        }

    def _place(self, group_id, result, player_id):
        """(outcome, team, own ids, other ids) if the player took part, else None."""
        outcome = completed_outcome(result)
        if outcome is None:
            return None
        resolved = self.resolver.resolve_roster(group_id, outcome.team_a + outcome.team_b)
        if any(pid is None for pid in resolved) or len(set(resolved)) != len(resolved):
            return None
        size = len(outcome.team_a)
        team_a, team_b = resolved[:size], resolved[size:]
        if player_id in team_a:
            return outcome, 'A', team_a, team_b
        if player_id in team_b:
            return outcome, 'B', team_b, team_a
        return None
