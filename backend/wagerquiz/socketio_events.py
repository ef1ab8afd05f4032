from flask import current_app, request
from flask_socketio import emit
from wagerquiz import socketio
from wagerquiz.errors import GameError
from typing import Any, Callable, Dict

NAMESPACE = '/ws'


class SocketIONotifier:
    """Room-scoped broadcasts over the Socket.IO server.

    Usable from background tasks as well as handlers, since it never
    touches the request context.
    """

    def __init__(self, sio, namespace: str = NAMESPACE):
        self.sio = sio
        self.namespace = namespace

    def broadcast(self, room_id: str, event: str, payload: Any = None) -> None:
        self.sio.emit(event, payload, to=room_id, namespace=self.namespace)

    def join(self, connection_id: str, room_id: str) -> None:
        self.sio.server.enter_room(connection_id, room_id, namespace=self.namespace)


def _engine():
    return current_app.extensions['wagerquiz']


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _field(data, key: str, default=None):
    if isinstance(data, dict):
        return data.get(key, default)
    return default


def _run(action: str, handler: Callable[..., Dict[str, Any]]) -> Dict[str, Any]:
    """Run an engine action and shape the acknowledgement.

    Only GameError is turned into a failure ack; anything else is a bug
    and propagates to Flask-SocketIO's error handling.
    """
    engine = _engine()
    session = engine.session(_get_sid())
    try:
        payload = handler(engine, session) or {}
    except GameError as exc:
        current_app.logger.info(f"[rejected] action={action} sid={session.connection_id} room={session.room_id} reason={exc.message}")
        return exc.to_response()
    return {'success': True, **payload}


def handle_connect(auth=None):
    _engine().connect(_get_sid())
    emit('connected', {'id': _get_sid()})


def handle_disconnect(reason=None):
    _engine().disconnect(_get_sid())


def handle_create_room(data=None):
    # Plain string payload is accepted as the username
    username = data if isinstance(data, str) else _field(data, 'username')
    return _run('create-room', lambda engine, session: {
        'room_id': engine.create_room(session, username).room_id,
    })


def handle_join_room(data=None):
    room_id = _field(data, 'room_id')
    username = _field(data, 'username')
    return _run('join-room', lambda engine, session: {
        'room_id': engine.join_room(session, room_id, username).room_id,
    })


def handle_player_ready(data=None):
    return _run('player-ready', lambda engine, session: engine.player_ready(session))


def handle_get_question(data=None):
    return _run('get-question', lambda engine, session: {
        'question': engine.get_question(session),
    })


def handle_submit_answer(data=None):
    raw = data.get('answer') if isinstance(data, dict) else data
    return _run('submit-answer', lambda engine, session: engine.submit_answer(session, raw))


def handle_begin_voting(data=None):
    return _run('begin-voting', lambda engine, session: engine.begin_voting(session))


def handle_confirm_wagers(data=None):
    wagers = _field(data, 'wagers', [])
    remaining = _field(data, 'remaining_tokens')
    return _run('confirm-wagers', lambda engine, session: engine.confirm_wagers(session, wagers, remaining))


def handle_get_voting_results(data=None):
    return _run('get-voting-results', lambda engine, session: engine.get_voting_results(session))


def handle_get_player_rankings(data=None):
    return _run('get-player-rankings', lambda engine, session: {
        'rankings': engine.get_player_rankings(session),
    })


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the '/ws' namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('create-room', handle_create_room, namespace=NAMESPACE)
    socketio.on_event('join-room', handle_join_room, namespace=NAMESPACE)
    socketio.on_event('player-ready', handle_player_ready, namespace=NAMESPACE)
    socketio.on_event('get-question', handle_get_question, namespace=NAMESPACE)
    socketio.on_event('submit-answer', handle_submit_answer, namespace=NAMESPACE)
    socketio.on_event('begin-voting', handle_begin_voting, namespace=NAMESPACE)
    socketio.on_event('confirm-wagers', handle_confirm_wagers, namespace=NAMESPACE)
    socketio.on_event('get-voting-results', handle_get_voting_results, namespace=NAMESPACE)
    socketio.on_event('get-player-rankings', handle_get_player_rankings, namespace=NAMESPACE)
