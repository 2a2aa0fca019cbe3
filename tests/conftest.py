from types import SimpleNamespace

import pytest
from backend.app import create_app, db


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    from backend.services.results import stats_services
    return stats_services()


@pytest.fixture
def make_group(app):
    """Build a group with players and one session whose roster mirrors them.

    Returns a namespace with .group, .players (name -> GroupPlayer),
    .session and .roster (name -> SessionPlayer id).
    """
    from backend.models import Group, GroupPlayer, PlaySession, SessionPlayer

    def _build(names=('Alice', 'Bob', 'Carol', 'Dan'), linked=True,
               ratings=None, name='Tuesday Dinkers', game_mode='doubles'):
        group = Group(name=name)
        db.session.add(group)
        db.session.flush()

        players = {}
        for player_name in names:
            player = GroupPlayer(group_id=group.id, name=player_name)
            if ratings and player_name in ratings:
                player.elo_rating = ratings[player_name]
            db.session.add(player)
            players[player_name] = player
        db.session.flush()

        session = PlaySession(group_id=group.id, name='Evening Open Play', game_mode=game_mode)
        db.session.add(session)
        db.session.flush()

        roster = {}
        for player_name, player in players.items():
            entry = SessionPlayer(
                session_id=session.id,
                name=player_name,
                group_player_id=player.id if linked else None,
            )
            db.session.add(entry)
            db.session.flush()
            roster[player_name] = entry.id
        db.session.commit()
        return SimpleNamespace(group=group, players=players, session=session, roster=roster)

    return _build


@pytest.fixture
def add_session_player(app):
    from backend.models import SessionPlayer

    def _add(session, name, group_player_id=None):
        entry = SessionPlayer(session_id=session.id, name=name, group_player_id=group_player_id)
        db.session.add(entry)
        db.session.commit()
        return entry.id

    return _add


def _player_state(group_id):
    """Snapshot of every player's aggregates, keyed by name."""
    from backend.models import GroupPlayer
    db.session.expire_all()
    return {
        row.name: row.aggregate_dict()
        for row in GroupPlayer.query.filter_by(group_id=group_id).all()
    }


def _partnership_state(group_id):
    from backend.models import PartnerStats
    db.session.expire_all()
    return {
        row.key: row.aggregate_dict()
        for row in PartnerStats.query.filter_by(group_id=group_id).all()
    }


def _matchup_state(group_id):
    from backend.models import PairingMatchup
    db.session.expire_all()
    return {
        (row.team1_key, row.team2_key): (row.team1_wins, row.team2_wins, row.total_games)
        for row in PairingMatchup.query.filter_by(group_id=group_id).all()
    }


@pytest.fixture
def state(app):
    return SimpleNamespace(
        players=_player_state,
        partnerships=_partnership_state,
        matchups=_matchup_state,
    )
