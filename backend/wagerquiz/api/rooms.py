from flask import Blueprint, current_app, jsonify

rooms = Blueprint('rooms', __name__)


@rooms.route('/<string:room_id>', methods=['GET'])
def get_room_state(room_id):
    """
    Returns the public state of a room: stage, round and roster.
    Answers and wagers are never exposed here.
    """
    engine = current_app.extensions['wagerquiz']
    room = engine.registry.get_room(room_id)
    if room is None:
        return jsonify({'error': 'Room not found'}), 404
    with room.lock:
        if room.deleted:
            return jsonify({'error': 'Room not found'}), 404
        return jsonify(room.to_dict())
