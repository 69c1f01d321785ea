from flask import Blueprint, jsonify, request, current_app

from wordgames import get_coordinator
from wordgames.errors import NotFoundError

games = Blueprint('games', __name__)

STATUS_BY_CODE = {
    'not_found': 404,
    'full': 409,
    'state_conflict': 409,
    'invalid': 400,
    'persistence': 503,
}


@games.route('', methods=['GET'])
def list_games():
    return jsonify(get_coordinator().list_games())


@games.route('', methods=['POST'])
def create_game():
    data = request.get_json(silent=True) or {}
    result = get_coordinator().create_game(
        None,
        data.get('playerName'),
        title=data.get('title'),
        game_type=data.get('gameType'),
    )
    if not result.get('success'):
        return jsonify({'error': result['error']}), STATUS_BY_CODE.get(result.get('code'), 500)
    current_app.logger.info(f"[api] created session={result['sessionId']}")
    return jsonify({
        'sessionId': result['sessionId'],
        'playerId': result['playerId'],
        'lobbyId': result['lobbyId'],
    }), 201


@games.route('/<string:session_id>/state', methods=['GET'])
def get_game_state(session_id):
    try:
        state = get_coordinator().get_state(session_id)
    except NotFoundError as exc:
        return jsonify({'error': exc.message}), 404
    return jsonify(state)
