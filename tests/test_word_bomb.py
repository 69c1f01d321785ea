import pytest

from conftest import FakeClock, ManualScheduler
from wordgames.errors import StateConflictError
from wordgames.services.games.types import Phase
from wordgames.services.games.word_bomb import WordBombEngine


def start_game(player_count=2, turn_seconds=15):
    scheduler = ManualScheduler()
    clock = FakeClock()
    engine = WordBombEngine(scheduler=scheduler, clock=clock)
    engine.initialize('b1', {'lobbyId': 'l1', 'maxPlayers': 4, 'minPlayers': 2, 'turnSeconds': turn_seconds})
    ids = [f'p{i}' for i in range(1, player_count + 1)]
    for i, pid in enumerate(ids):
        engine.add_player(pid, f'Player {i + 1}', is_host=(i == 0))
    for pid in ids:
        engine.set_player_ready(pid)
    return engine, scheduler, clock


def fire_turn(engine):
    kind, token = engine.armed_timer
    assert kind == 'turn'
    return engine.handle_timer(kind, token)


def test_starts_when_everyone_is_ready():
    scheduler = ManualScheduler()
    engine = WordBombEngine(scheduler=scheduler, clock=FakeClock())
    engine.initialize('b1', {'maxPlayers': 4})
    engine.add_player('p1', 'Alice', is_host=True)
    engine.add_player('p2', 'Bob')
    engine.set_player_ready('p1')
    assert engine.phase == Phase.WAITING_FOR_PLAYERS
    engine.set_player_ready('p2')
    assert engine.phase == Phase.ACTIVE
    assert engine.current_player_id == 'p1'
    assert scheduler.pending('b1')[0] == 'turn'

    turn = [p for name, p in engine.drain_events() if name == 'turnChange']
    assert turn[-1]['playerId'] == 'p1'
    assert turn[-1]['timeLimit'] == 15


def test_single_ready_player_does_not_start():
    engine = WordBombEngine(scheduler=ManualScheduler(), clock=FakeClock())
    engine.initialize('b1', {'maxPlayers': 4})
    engine.add_player('p1', 'Alice')
    engine.set_player_ready('p1')
    assert engine.phase == Phase.WAITING_FOR_PLAYERS


def test_out_of_turn_move_rejected():
    engine, _, _ = start_game()
    result = engine.process_move('p2', 'apple')
    assert result.accepted is False
    assert result.error == 'Not your turn'
    assert engine.moves == []


def test_chain_rule_and_turn_passing():
    engine, _, _ = start_game()
    first = engine.process_move('p1', 'Apple')
    assert first.accepted
    assert engine.players['p1'].score == 5
    assert engine.current_player_id == 'p2'

    wrong_letter = engine.process_move('p2', 'banana')
    assert wrong_letter.accepted is False
    assert 'start with "e"' in wrong_letter.error

    assert engine.process_move('p2', 'egg').accepted
    assert engine.current_player_id == 'p1'
    assert [m.payload for m in engine.moves] == ['apple', 'egg']

    events = engine.drain_events()
    words = [p for name, p in events if name == 'newWord']
    assert [w['value'] for w in words] == ['apple', 'egg']
    assert words[0]['score'] == 5


def test_repeated_and_short_words_rejected():
    engine, _, _ = start_game()
    assert engine.process_move('p1', 'anna').accepted
    repeated = engine.process_move('p2', 'anna')
    assert repeated.accepted is False
    assert 'already played' in repeated.error
    short = engine.process_move('p2', 'a')
    assert short.accepted is False
    assert engine.current_player_id == 'p2'
    assert len(engine.moves) == 1


def test_accepted_word_rearms_turn_timer():
    engine, scheduler, _ = start_game()
    _, old_token = engine.armed_timer
    engine.process_move('p1', 'apple')
    _, new_token = engine.armed_timer
    assert new_token != old_token
    assert engine.handle_timer('turn', old_token) is False
    assert engine.phase == Phase.ACTIVE
    assert scheduler.pending('b1')[1] == new_token


def test_timeout_with_two_players_ends_game():
    engine, _, _ = start_game()
    engine.drain_events()
    assert fire_turn(engine) is True
    assert engine.players['p1'].eliminated
    assert engine.phase == Phase.COMPLETED
    assert engine.outcome == {'winnerId': 'p2', 'winnerName': 'Player 2', 'reason': 'timeout'}

    names = [name for name, _ in engine.drain_events()]
    assert names[0] == 'playerEliminated'
    assert names[-1] == 'gameOver'


def test_timeout_with_three_players_passes_turn():
    engine, _, _ = start_game(player_count=3)
    fire_turn(engine)
    assert engine.phase == Phase.ACTIVE
    assert engine.current_player_id == 'p2'

    assert engine.process_move('p2', 'tree').accepted
    # p1 is out, so the turn wraps from p3 straight back to p2
    assert engine.current_player_id == 'p3'
    assert engine.process_move('p3', 'east').accepted
    assert engine.current_player_id == 'p2'

    fire_turn(engine)
    assert engine.phase == Phase.COMPLETED
    assert engine.outcome['winnerId'] == 'p3'


def test_eliminated_player_cannot_move():
    engine, _, _ = start_game(player_count=3)
    fire_turn(engine)
    assert engine.process_move('p1', 'apple').accepted is False


def test_leaving_mid_game_forfeits_to_remaining_player():
    engine, scheduler, _ = start_game()
    engine.remove_player('p1')
    assert engine.phase == Phase.COMPLETED
    assert engine.outcome['winnerId'] == 'p2'
    assert engine.outcome['reason'] == 'forfeit'
    assert engine.armed_timer is None
    assert scheduler.pending('b1') is None


def test_current_player_leaving_passes_turn():
    engine, _, _ = start_game(player_count=3)
    engine.remove_player('p1')
    assert engine.phase == Phase.ACTIVE
    assert engine.current_player_id == 'p2'
    assert engine.armed_timer[0] == 'turn'


def test_timer_ignored_after_game_over():
    engine, _, _ = start_game()
    _, token = engine.armed_timer
    engine.remove_player('p2')
    assert engine.phase == Phase.COMPLETED
    assert engine.handle_timer('turn', token) is False
    assert not engine.players['p1'].eliminated


def test_public_state_exposes_turn():
    engine, _, clock = start_game(turn_seconds=10)
    state = engine.get_public_state()
    assert state['currentPlayerId'] == 'p1'
    assert state['turnTimeLimit'] == 10
    assert state['turnDeadline'] == clock.now + 10
    assert state['gameType'] == 'WORD_BOMB'


def test_start_game_does_not_restart_a_running_game():
    engine, scheduler, _ = start_game()
    assert engine.process_move('p1', 'apple').accepted
    armed = scheduler.pending('b1')

    with pytest.raises(StateConflictError):
        engine.start_game()
    assert engine.phase == Phase.ACTIVE
    assert engine.current_player_id == 'p2'
    assert scheduler.pending('b1') == armed
    assert [m.payload for m in engine.moves] == ['apple']
