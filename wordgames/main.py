from flask import Blueprint, jsonify

from wordgames.services.games import supported_game_types

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({
        'message': 'Word games server is running',
        'gameTypes': supported_game_types(),
    })
