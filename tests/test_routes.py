"""Tests for the group standings and session game endpoints."""
import json

import pytest

from backend.app import socketio


@pytest.fixture
def emitted(monkeypatch):
    events = []
    monkeypatch.setattr(socketio, 'emit', lambda event, payload, **kwargs: events.append((event, payload)))
    return events


def _post_game(client, setup, team_a, team_b, **extra):
    payload = {
        'team_a': [setup.roster[name] for name in team_a],
        'team_b': [setup.roster[name] for name in team_b],
    }
    payload.update(extra)
    return client.post(f'/api/sessions/{setup.session.id}/games', json=payload)


def test_health(client):
    res = client.get('/api/health')
    assert res.status_code == 200
    assert json.loads(res.data)['status'] == 'ok'


def test_create_game_updates_ladder_and_notifies(client, make_group, emitted):
    setup = make_group()
    res = _post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan'],
                     winning_team='a', team_a_score=11, team_b_score=9)
    assert res.status_code == 201
    data = json.loads(res.data)
    assert data['game']['winning_team'] == 'A'
    assert data['game']['game_number'] == 1
    assert len(data['stats']['applied']['player_changes']) == 4

    assert [event for event, _ in emitted] == ['stats_update']
    assert emitted[0][1]['group_id'] == setup.group.id
    assert emitted[0][1]['reason'] == 'game_recorded'

    ladder = json.loads(client.get(f'/api/groups/{setup.group.id}/players').data)['players']
    assert [p['name'] for p in ladder[:2]] == ['Alice', 'Bob']
    assert ladder[0]['elo_rating'] == 1516
    assert ladder[0]['points_for'] == 11
    assert ladder[-1]['elo_rating'] == 1484


@pytest.mark.parametrize('payload,message', [
    ({'team_a': 'nope', 'team_b': []}, 'team_a must be a list'),
    ({'team_a': [1, 2, 3], 'team_b': [4, 5, 6]}, 'Teams must both have'),
    ({'team_a': [1, 2], 'team_b': [3]}, 'Teams must both have'),
    ({'team_a': [1, 2], 'team_b': [2, 3]}, 'Duplicate players'),
    ({'team_a': [1, 2], 'team_b': [3, 999]}, 'must belong to this session'),
    ({'team_a': [1, 2], 'team_b': [3, 4], 'winning_team': 'C'}, 'winning_team must be'),
    ({'team_a': [1, 2], 'team_b': [3, 4], 'team_a_score': -1}, 'team_a_score must be between'),
    ({'team_a': [1, 2], 'team_b': [3, 4], 'team_b_score': 'eleven'}, 'team_b_score must be an integer'),
    ({'team_a': [1, 2], 'team_b': [3, 4], 'game_number': 0}, 'game_number must be positive'),
])
def test_create_game_validation(client, make_group, payload, message):
    setup = make_group()
    assert list(setup.roster.values()) == [1, 2, 3, 4]
    res = client.post(f'/api/sessions/{setup.session.id}/games', json=payload)
    assert res.status_code == 400
    assert message in json.loads(res.data)['error']


def test_unknown_session_and_group_return_404(client):
    assert client.get('/api/sessions/999/games').status_code == 404
    assert client.post('/api/sessions/999/games', json={}).status_code == 404
    assert client.get('/api/groups/999/players').status_code == 404
    assert client.post('/api/groups/999/recalculate').status_code == 404


def test_list_update_and_delete_games(client, make_group, emitted):
    setup = make_group()
    first = json.loads(_post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan']).data)['game']
    _post_game(client, setup, ['Alice', 'Carol'], ['Bob', 'Dan'], winning_team='B')

    games = json.loads(client.get(f'/api/sessions/{setup.session.id}/games').data)['games']
    assert [g['game_number'] for g in games] == [1, 2]
    assert games[0]['winning_team'] is None

    res = client.patch(f'/api/sessions/{setup.session.id}/games/{first["id"]}', json={
        'winning_team': 'A', 'team_a_score': 11, 'team_b_score': 8,
    })
    assert res.status_code == 200
    data = json.loads(res.data)
    assert data['game']['team_a_score'] == 11
    assert data['stats']['recalculated']['games_processed'] == 2

    res = client.patch(f'/api/sessions/{setup.session.id}/games/{first["id"]}', json={})
    assert res.status_code == 400
    res = client.patch(f'/api/sessions/{setup.session.id}/games/999', json={'winning_team': 'A'})
    assert res.status_code == 404

    res = client.delete(f'/api/sessions/{setup.session.id}/games/{first["id"]}')
    assert res.status_code == 200
    assert client.delete(f'/api/sessions/{setup.session.id}/games/{first["id"]}').status_code == 404

    ladder = json.loads(client.get(f'/api/groups/{setup.group.id}/players').data)['players']
    assert sum(p['total_games'] for p in ladder) == 4
    assert [payload['reason'] for _, payload in emitted][-2:] == [
        'game_updated', 'game_deleted',
    ]


def test_update_rejects_roster_outside_session(client, make_group):
    setup = make_group()
    game = json.loads(_post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan']).data)['game']
    res = client.patch(f'/api/sessions/{setup.session.id}/games/{game["id"]}', json={
        'team_b': [setup.roster['Carol'], 999],
    })
    assert res.status_code == 400


def test_pairings_flag_qualified_partnerships(client, make_group):
    setup = make_group()
    for _ in range(5):
        _post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan'], winning_team='A')
    _post_game(client, setup, ['Alice', 'Carol'], ['Bob', 'Dan'], winning_team='A')

    data = json.loads(client.get(f'/api/groups/{setup.group.id}/pairings').data)
    assert data['min_games_qualified'] == 5
    pairings = data['pairings']
    assert [(p['player1_name'], p['player2_name'], p['qualified']) for p in pairings[:2]] == [
        ('Alice', 'Bob', True), ('Carol', 'Dan', True),
    ]
    assert {p['qualified'] for p in pairings[2:]} == {False}
    assert pairings[0]['wins'] == 5


def test_matchups_from_one_pairings_perspective(client, make_group):
    setup = make_group()
    _post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan'], winning_team='A')
    _post_game(client, setup, ['Dan', 'Carol'], ['Bob', 'Alice'], winning_team='A')
    _post_game(client, setup, ['Carol', 'Dan'], ['Alice', 'Bob'], winning_team='A')

    url = f'/api/groups/{setup.group.id}/matchups'
    everything = json.loads(client.get(url).data)['matchups']
    assert len(everything) == 1
    assert everything[0]['total_games'] == 3

    carol, dan = setup.players['Carol'].id, setup.players['Dan'].id
    view = json.loads(client.get(f'{url}?player1_id={dan}&player2_id={carol}').data)['matchups']
    assert view[0]['team1'] == [carol, dan]
    assert (view[0]['team1_wins'], view[0]['team2_wins']) == (2, 1)

    assert client.get(f'{url}?player1_id={dan}').status_code == 400


def test_recalculate_endpoint(client, make_group, emitted):
    setup = make_group()
    _post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan'], winning_team='B')

    res = client.post(f'/api/groups/{setup.group.id}/recalculate')
    assert res.status_code == 200
    summary = json.loads(res.data)['summary']
    assert summary['games_processed'] == 1
    assert summary['players_updated'] == ['Alice', 'Bob', 'Carol', 'Dan']
    assert emitted[-1][1]['reason'] == 'recalculated'


def test_recalculate_endpoint_reports_failure(client, make_group, monkeypatch):
    from backend.services.recalculator import RecalculationError, RecalculationPhase
    from backend.services.results import stats_services

    setup = make_group()

    def _fail(group_id):
        raise RecalculationError(group_id, RecalculationPhase.RESETTING)

    monkeypatch.setattr(stats_services(), 'recalculate_group', _fail)
    res = client.post(f'/api/groups/{setup.group.id}/recalculate')
    assert res.status_code == 500
    assert json.loads(res.data)['phase'] == 'resetting'


def test_player_stats_breakdown(client, make_group):
    setup = make_group()
    _post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan'],
               winning_team='A', team_a_score=11, team_b_score=9)
    _post_game(client, setup, ['Alice', 'Carol'], ['Bob', 'Dan'],
               winning_team='B', team_a_score=10, team_b_score=11)
    _post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan'],
               winning_team='A', team_a_score=11, team_b_score=3)
    _post_game(client, setup, ['Alice', 'Dan'], ['Bob', 'Carol'], winning_team='B')
    _post_game(client, setup, ['Alice', 'Bob'], ['Carol', 'Dan'])

    alice_id = setup.players['Alice'].id
    res = client.get(f'/api/groups/{setup.group.id}/players/{alice_id}/stats')
    assert res.status_code == 200
    stats = json.loads(res.data)['stats']

    assert (stats['wins'], stats['losses'], stats['total_games']) == (2, 2, 4)
    assert stats['win_pct'] == 0.5
    assert (stats['points_scored'], stats['points_conceded'], stats['point_diff']) == (32, 23, 9)
    assert stats['recent_form'] == ['L', 'W', 'L', 'W']
    assert (stats['current_streak'], stats['best_win_streak']) == (-1, 1)
    assert (stats['rank'], stats['total_players'], stats['sessions_played']) == (2, 4, 1)
    assert len(stats['recent_games']) == 4
    assert stats['recent_games'][0]['team_b'] == ['Bob', 'Carol']

    ladder = json.loads(client.get(f'/api/groups/{setup.group.id}/players').data)['players']
    assert stats['elo_rating'] == next(p['elo_rating'] for p in ladder if p['name'] == 'Alice')

    assert stats['unlucky_count'] == 1
    unlucky = stats['unlucky_games'][0]
    assert (unlucky['team_a'], unlucky['team_b']) == (['Alice', 'Carol'], ['Bob', 'Dan'])
    assert (unlucky['margin'], unlucky['won']) == (1, False)

    assert [(p['name'], p['wins'], p['losses']) for p in stats['partners']] == [
        ('Bob', 2, 0), ('Carol', 0, 1), ('Dan', 0, 1),
    ]
    assert [(o['name'], o['wins'], o['losses']) for o in stats['opponents']] == [
        ('Carol', 2, 1), ('Dan', 2, 1), ('Bob', 0, 2),
    ]


def test_player_stats_without_games_and_missing_players(client, make_group):
    setup = make_group()
    other = make_group(name='Weekend Bangers')
    group_id, dan_id = setup.group.id, setup.players['Dan'].id

    stats = json.loads(client.get(f'/api/groups/{group_id}/players/{dan_id}/stats').data)['stats']
    assert (stats['total_games'], stats['win_pct'], stats['current_streak']) == (0, 0.0, 0)
    assert stats['recent_form'] == [] and stats['partners'] == []
    assert stats['rank'] == 4

    outsider = other.players['Alice'].id
    assert client.get(f'/api/groups/{group_id}/players/{outsider}/stats').status_code == 404
    assert client.get(f'/api/groups/{group_id}/players/9999/stats').status_code == 404
    assert client.get(f'/api/groups/9999/players/{dan_id}/stats').status_code == 404


def test_player_stats_store_failure_returns_500(client, make_group, monkeypatch):
    from backend.services.results import stats_services
    from backend.services.stores import StoreError

    setup = make_group()

    def _fail(group_id, player_id):
        raise StoreError('loading results failed')

    monkeypatch.setattr(stats_services(), 'player_stats', _fail)
    res = client.get(f'/api/groups/{setup.group.id}/players/{setup.players["Bob"].id}/stats')
    assert res.status_code == 500
