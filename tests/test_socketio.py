from wordgames import socketio


def names(received):
    return [pkt['name'] for pkt in received]


def last(received, name):
    matching = [pkt['args'][0] for pkt in received if pkt['name'] == name]
    return matching[-1] if matching else None


def test_socket_connect(sio_client):
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert 'connected' in names(received)


def test_ping_pong(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert last(received, 'pong') == {'n': 1}


def test_create_and_join_over_socket(flask_app, sio_client):
    ack = sio_client.emit('createGame', {'playerName': 'Alice', 'title': 'Socket game'},
                          namespace='/ws', callback=True)
    assert ack['success'] is True
    assert ack['playerId']
    session_id = ack['sessionId']

    state = last(sio_client.get_received('/ws'), 'gameState')
    assert state['id'] == session_id
    assert state['title'] == 'Socket game'

    guest = socketio.test_client(flask_app, namespace='/ws')
    try:
        joined = guest.emit('joinGame', {'sessionId': session_id, 'playerName': 'Bob'},
                            namespace='/ws', callback=True)
        assert joined['success'] is True

        host_events = sio_client.get_received('/ws')
        lobby = last(host_events, 'lobbyState')
        assert [p['name'] for p in lobby['players']] == ['Alice', 'Bob']
        assert last(host_events, 'gameState')['phase'] == 'SETTING_UP'

        guest_state = last(guest.get_received('/ws'), 'gameState')
        assert guest_state['you'] == joined['playerId']
    finally:
        guest.disconnect(namespace='/ws')


def test_word_match_round_over_socket(flask_app, sio_client):
    ack = sio_client.emit('createGame', {'playerName': 'Alice'}, namespace='/ws', callback=True)
    session_id = ack['sessionId']
    guest = socketio.test_client(flask_app, namespace='/ws')
    try:
        guest.emit('joinGame', {'sessionId': session_id, 'playerName': 'Bob'}, namespace='/ws', callback=True)
        assert sio_client.emit('setSecretWord', {'value': 'apple'}, namespace='/ws', callback=True)['success']
        assert guest.emit('setPlayerReady', 'pear', namespace='/ws', callback=True)['success']
        sio_client.get_received('/ws')
        guest.get_received('/ws')

        sio_client.emit('makeGuess', {'value': 'moon'}, namespace='/ws', callback=True)
        over = guest.emit('makeMove', 'moon', namespace='/ws', callback=True)
        assert over['isGameOver'] is True

        received = sio_client.get_received('/ws')
        assert names(received).count('newGuess') == 2
        assert last(received, 'gameOver')['winningValue'] == 'moon'
    finally:
        guest.disconnect(namespace='/ws')


def test_join_unknown_game_gets_error(sio_client):
    sio_client.get_received('/ws')
    ack = sio_client.emit('joinGame', {'sessionId': 'missing', 'playerName': 'Bob'},
                          namespace='/ws', callback=True)
    assert ack == {'success': False, 'error': 'Game not found', 'code': 'not_found'}
    assert last(sio_client.get_received('/ws'), 'error')['code'] == 'not_found'


def test_disconnect_marks_player_and_reconnect(flask_app, sio_client):
    ack = sio_client.emit('createGame', {'playerName': 'Alice'}, namespace='/ws', callback=True)
    session_id = ack['sessionId']
    guest = socketio.test_client(flask_app, namespace='/ws')
    joined = guest.emit('joinGame', {'sessionId': session_id, 'playerName': 'Bob'},
                        namespace='/ws', callback=True)
    sio_client.get_received('/ws')

    guest.disconnect(namespace='/ws')
    received = sio_client.get_received('/ws')
    assert last(received, 'playerDisconnected')['playerId'] == joined['playerId']
    players = {p['id']: p for p in last(received, 'gameState')['players']}
    assert players[joined['playerId']]['isConnected'] is False

    again = socketio.test_client(flask_app, namespace='/ws')
    try:
        back = again.emit('reconnect', {'sessionId': session_id, 'playerId': joined['playerId']},
                          namespace='/ws', callback=True)
        assert back['success'] is True
        received = sio_client.get_received('/ws')
        assert last(received, 'playerReconnected')['playerId'] == joined['playerId']
    finally:
        again.disconnect(namespace='/ws')


def test_leave_and_game_list(flask_app, sio_client):
    ack = sio_client.emit('createGame', {'playerName': 'Alice'}, namespace='/ws', callback=True)
    browser = socketio.test_client(flask_app, namespace='/ws')
    try:
        listing = browser.emit('getGameList', namespace='/ws', callback=True)
        assert [g['id'] for g in listing['games']] == [ack['sessionId']]
        browser.get_received('/ws')

        left = sio_client.emit('leaveGame', namespace='/ws', callback=True)
        assert left == {'success': True}
        # Everyone is told the list changed
        assert 'gameListUpdated' in names(browser.get_received('/ws'))
        listing = browser.emit('getGameList', namespace='/ws', callback=True)
        assert listing['games'] == []
    finally:
        browser.disconnect(namespace='/ws')
