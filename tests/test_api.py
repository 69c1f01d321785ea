def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert set(res.get_json()['gameTypes']) == {'WORD_MATCH', 'WORD_BOMB'}


def test_create_game(client):
    res = client.post('/api/games', json={'playerName': 'Alice', 'title': 'REST game'})
    assert res.status_code == 201
    data = res.get_json()
    assert {'sessionId', 'playerId', 'lobbyId'} <= set(data)


def test_create_game_requires_name(client):
    res = client.post('/api/games', json={})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'Player name is required'


def test_create_game_rejects_unknown_type(client):
    res = client.post('/api/games', json={'playerName': 'Alice', 'gameType': 'CHESS'})
    assert res.status_code == 400


def test_list_and_state(client):
    created = client.post('/api/games', json={'playerName': 'Alice', 'gameType': 'WORD_BOMB'}).get_json()

    games = client.get('/api/games').get_json()
    assert [g['id'] for g in games] == [created['sessionId']]
    assert games[0]['gameType'] == 'WORD_BOMB'
    assert games[0]['connectedCount'] == 0

    res = client.get(f"/api/games/{created['sessionId']}/state")
    assert res.status_code == 200
    state = res.get_json()
    assert state['phase'] == 'WAITING_FOR_PLAYERS'
    assert state['players'][0]['name'] == 'Alice'
    assert state['players'][0]['isHost'] is True


def test_state_unknown_game(client):
    res = client.get('/api/games/not-a-game/state')
    assert res.status_code == 404
