import json
from backend.app import db
from backend.time_utils import utcnow_naive, isoformat_or_none


def _safe_json(raw_value, fallback=None):
    if fallback is None:
        fallback = []
    if not raw_value:
        return fallback
    if isinstance(raw_value, (list, tuple)):
        return list(raw_value)
    try:
        return json.loads(raw_value)
    except (TypeError, ValueError):
        return fallback


def _int_ids(raw_value):
    ids = []
    for raw in _safe_json(raw_value):
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            continue
    return ids


def _win_pct(wins, total):
    return round(wins / total, 3) if total else 0.0


class Group(db.Model):
    __tablename__ = 'groups'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    players = db.relationship('GroupPlayer', backref='group', lazy='select')

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name,
            'created_at': isoformat_or_none(self.created_at),
        }


class AggregateColumnsMixin:
    """Running counters shared by players and partnerships."""
    elo_rating = db.Column(db.Integer, default=1500, nullable=False)
    wins = db.Column(db.Integer, default=0, nullable=False)
    losses = db.Column(db.Integer, default=0, nullable=False)
    total_games = db.Column(db.Integer, default=0, nullable=False)
    # positive = win run, negative = loss run
    current_streak = db.Column(db.Integer, default=0, nullable=False)
    best_win_streak = db.Column(db.Integer, default=0, nullable=False)
    points_for = db.Column(db.Integer, default=0, nullable=False)
    points_against = db.Column(db.Integer, default=0, nullable=False)

    def aggregate_dict(self):
        return {
            'elo_rating': self.elo_rating,
            'wins': self.wins,
            'losses': self.losses,
            'total_games': self.total_games,
            'win_pct': _win_pct(self.wins or 0, self.total_games or 0),
            'current_streak': self.current_streak,
            'best_win_streak': self.best_win_streak,
            'points_for': self.points_for,
            'points_against': self.points_against,
            'point_diff': (self.points_for or 0) - (self.points_against or 0),
        }


class GroupPlayer(AggregateColumnsMixin, db.Model):
    """Durable player identity within a group."""
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        data = {'id': self.id, 'group_id': self.group_id, 'name': self.name}
        data.update(self.aggregate_dict())
        return data


class PlaySession(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=True, index=True)
    name = db.Column(db.String(200), default='')
    game_mode = db.Column(db.String(20), default='doubles')  # doubles, singles
    date = db.Column(db.DateTime, default=lambda: utcnow_naive())
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    group = db.relationship('Group', backref='sessions')
    players = db.relationship('SessionPlayer', backref='session', lazy='select')

    def to_dict(self):
        return {
            'id': self.id, 'group_id': self.group_id, 'name': self.name,
            'game_mode': self.game_mode,
            'date': isoformat_or_none(self.date),
            'players': [p.to_dict() for p in self.players],
        }


class SessionPlayer(db.Model):
    """Session-scoped roster entry, optionally linked to a GroupPlayer."""
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('play_session.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    group_player_id = db.Column(db.Integer, db.ForeignKey('group_player.id'), nullable=True)

    group_player = db.relationship('GroupPlayer')

    def to_dict(self):
        return {
            'id': self.id, 'session_id': self.session_id,
            'name': self.name, 'group_player_id': self.group_player_id,
        }


class GameResult(db.Model):
    """A recorded game. winning_team is NULL for scheduled-but-unplayed games."""
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('play_session.id'), nullable=False)
    game_number = db.Column(db.Integer, nullable=False)
    team_a = db.Column(db.Text, nullable=False)  # JSON list of SessionPlayer ids
    team_b = db.Column(db.Text, nullable=False)
    winning_team = db.Column(db.String(1), nullable=True)  # 'A', 'B'
    team_a_score = db.Column(db.Integer, nullable=True)
    team_b_score = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(
        db.DateTime,
        default=lambda: utcnow_naive(),
        onupdate=lambda: utcnow_naive(),
    )

    __table_args__ = (
        db.Index('ix_game_result_session_number', 'session_id', 'game_number'),
        db.Index('ix_game_result_created', 'created_at', 'id'),
    )

    session = db.relationship('PlaySession', backref='games')

    @property
    def team_a_ids(self):
        return _int_ids(self.team_a)

    @property
    def team_b_ids(self):
        return _int_ids(self.team_b)

    def to_dict(self):
        return {
            'id': self.id, 'session_id': self.session_id,
            'game_number': self.game_number,
            'team_a': self.team_a_ids, 'team_b': self.team_b_ids,
            'winning_team': self.winning_team,
            'team_a_score': self.team_a_score, 'team_b_score': self.team_b_score,
            'created_at': isoformat_or_none(self.created_at),
            'updated_at': isoformat_or_none(self.updated_at),
        }


class PartnerStats(AggregateColumnsMixin, db.Model):
    """Doubles partnership record; player1_id < player2_id always."""
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    player1_id = db.Column(db.Integer, db.ForeignKey('group_player.id'), nullable=False)
    player2_id = db.Column(db.Integer, db.ForeignKey('group_player.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(
        db.DateTime,
        default=lambda: utcnow_naive(),
        onupdate=lambda: utcnow_naive(),
    )

    __table_args__ = (
        db.UniqueConstraint('group_id', 'player1_id', 'player2_id', name='uq_partner_stats_pair'),
        db.CheckConstraint('player1_id < player2_id', name='ck_partner_stats_order'),
    )

    player1 = db.relationship('GroupPlayer', foreign_keys=[player1_id])
    player2 = db.relationship('GroupPlayer', foreign_keys=[player2_id])

    @property
    def key(self):
        return (self.player1_id, self.player2_id)

    def to_dict(self):
        data = {
            'id': self.id, 'group_id': self.group_id,
            'player1_id': self.player1_id, 'player2_id': self.player2_id,
            'player1_name': self.player1.name if self.player1 else None,
            'player2_name': self.player2.name if self.player2 else None,
        }
        data.update(self.aggregate_dict())
        return data


class PairingMatchup(db.Model):
    """Head-to-head record between two partnerships, stored once per unordered pair."""
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    team1_player1_id = db.Column(db.Integer, db.ForeignKey('group_player.id'), nullable=False)
    team1_player2_id = db.Column(db.Integer, db.ForeignKey('group_player.id'), nullable=False)
    team2_player1_id = db.Column(db.Integer, db.ForeignKey('group_player.id'), nullable=False)
    team2_player2_id = db.Column(db.Integer, db.ForeignKey('group_player.id'), nullable=False)
    team1_wins = db.Column(db.Integer, default=0, nullable=False)
    team2_wins = db.Column(db.Integer, default=0, nullable=False)
    total_games = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(
        db.DateTime,
        default=lambda: utcnow_naive(),
        onupdate=lambda: utcnow_naive(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            'group_id',
            'team1_player1_id', 'team1_player2_id',
            'team2_player1_id', 'team2_player2_id',
            name='uq_pairing_matchup_teams',
        ),
        db.CheckConstraint('team1_player1_id < team1_player2_id', name='ck_pairing_matchup_team1_order'),
        db.CheckConstraint('team2_player1_id < team2_player2_id', name='ck_pairing_matchup_team2_order'),
    )

    @property
    def team1_key(self):
        return (self.team1_player1_id, self.team1_player2_id)

    @property
    def team2_key(self):
        return (self.team2_player1_id, self.team2_player2_id)

    def to_dict(self, perspective=None):
        """Serialize; with perspective=<team key> the requested team is reported as team1."""
        team1, team2 = list(self.team1_key), list(self.team2_key)
        team1_wins, team2_wins = self.team1_wins, self.team2_wins
        if perspective is not None and tuple(perspective) == self.team2_key:
            team1, team2 = team2, team1
            team1_wins, team2_wins = team2_wins, team1_wins
        return {
            'id': self.id, 'group_id': self.group_id,
            'team1': team1, 'team2': team2,
            'team1_wins': team1_wins, 'team2_wins': team2_wins,
            'total_games': self.total_games,
            'team1_win_pct': _win_pct(team1_wins, self.total_games),
        }
