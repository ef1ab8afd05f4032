from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the wagerquiz game server!'})


@main.route('/health')
def health():
    engine = current_app.extensions['wagerquiz']
    return jsonify({'status': 'ok', 'rooms': len(engine.registry)})
