import logging
import math
import random
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional, Sequence

from wagerquiz.errors import PreconditionError, ResourceExhaustedError, ValidationError
from wagerquiz.models import Player, Question, Room, Session, Stage, Wager
from wagerquiz.questions import shuffled_deck
from .registry import RoomRegistry
from .scheduler import Scheduler
from .scoring import calculate_tokens, rankings


class GameEngine:
    """Per-room stage machine, answer/vote aggregation and settlement.

    Every mutation of a room happens while holding ``room.lock``; broadcasts
    are sent from inside the lock, after the state they report is applied.
    Stage transitions all go through ``_attempt_advance`` so the action
    handlers and the disconnect path can never advance a room twice.

    ``notifier`` must provide ``broadcast(room_id, event, payload)`` and
    ``join(connection_id, room_id)``.
    """

    def __init__(self, question_bank: Sequence[Question], notifier, scheduler: Scheduler,
                 logger: Optional[logging.Logger] = None, *, question_limit: int = 5,
                 max_users_per_room: int = 8, max_username_length: int = 20,
                 default_tokens: int = 100, minimum_tokens: int = 10,
                 inner_ranking_timeout: float = 5.0, rng: Optional[random.Random] = None):
        self.question_bank = tuple(question_bank)
        self.notifier = notifier
        self.scheduler = scheduler
        self.logger = logger or logging.getLogger(__name__)
        self.question_limit = question_limit
        self.max_users_per_room = max_users_per_room
        self.max_username_length = max_username_length
        self.default_tokens = default_tokens
        self.minimum_tokens = minimum_tokens
        self.inner_ranking_timeout = inner_ranking_timeout
        self.registry = RoomRegistry(rng)
        self.sessions: Dict[str, Session] = {}
        self._sessions_lock = threading.Lock()

    @classmethod
    def from_config(cls, config, question_bank, notifier, scheduler, logger=None):
        return cls(
            question_bank, notifier, scheduler, logger,
            question_limit=int(config.get('QUESTION_LIMIT', 5)),
            max_users_per_room=int(config.get('MAX_USERS_PER_ROOM', 8)),
            max_username_length=int(config.get('MAX_USERNAME_LENGTH', 20)),
            default_tokens=int(config.get('DEFAULT_TOKENS', 100)),
            minimum_tokens=int(config.get('MINIMUM_TOKENS', 10)),
            inner_ranking_timeout=float(config.get('INNER_RANKING_TIMEOUT', 5)),
        )

    # ---- Sessions ----

    def connect(self, connection_id: str) -> Session:
        with self._sessions_lock:
            session = self.sessions.get(connection_id)
            if session is None:
                session = self.sessions[connection_id] = Session(connection_id)
            return session

    def session(self, connection_id: str) -> Session:
        return self.connect(connection_id)

    # ---- Lobby ----

    def create_room(self, session: Session, username) -> Room:
        name = self._validate_username(username)
        self._ensure_not_in_room(session)
        if not self.question_bank:
            raise PreconditionError('No questions available')
        room = self.registry.create_room(
            lambda rng: shuffled_deck(self.question_bank, rng), self.question_limit
        )
        with room.lock:
            room.players.append(Player(id=session.connection_id, username=name))
            session.room_id = room.room_id
            self.notifier.join(session.connection_id, room.room_id)
            self.logger.info(f"[room-created] room={room.room_id} owner={session.connection_id} deck={len(room.deck)}")
            self._broadcast_roster(room)
        return room

    def join_room(self, session: Session, room_id, username) -> Room:
        name = self._validate_username(username)
        self._ensure_not_in_room(session)
        room_id = str(room_id or '').strip()
        with self._locked_room(room_id) as room:
            if room.stage is not Stage.LOBBY:
                raise PreconditionError('Game already in progress')
            if len(room.players) >= self.max_users_per_room:
                raise PreconditionError('Room is full')
            if room.has_username(name):
                raise ValidationError('Username already taken in this room')
            room.players.append(Player(id=session.connection_id, username=name))
            session.room_id = room.room_id
            self.notifier.join(session.connection_id, room.room_id)
            self.logger.info(f"[room-joined] room={room.room_id} player={session.connection_id} players={len(room.players)}")
            self._broadcast_roster(room)
            return room

    def player_ready(self, session: Session) -> None:
        with self._player_room(session, allow_lobby=True) as (room, player):
            if room.stage is not Stage.LOBBY:
                raise PreconditionError('Game already started')
            player.ready = True
            self.notifier.broadcast(room.room_id, 'player-ready-updated', {'id': player.id, 'ready': True})
            self._attempt_advance(room)

    # ---- Answering ----

    def get_question(self, session: Session) -> dict:
        with self._player_room(session, Stage.ANSWERING, Stage.VOTING, Stage.SETTLING) as (room, _):
            return room.question_payload()

    def submit_answer(self, session: Session, raw_value) -> None:
        with self._player_room(session, Stage.ANSWERING) as (room, player):
            value = parse_answer(raw_value)
            if player.answer is not None:
                raise PreconditionError('Answer already submitted')
            player.answer = value
            player.ready = True
            self.logger.debug(f"[answer] room={room.room_id} player={player.id} round={room.round_index}")
            self.notifier.broadcast(room.room_id, 'player-ready-updated', {'id': player.id, 'ready': True})
            self._attempt_advance(room)

    # ---- Voting ----

    def begin_voting(self, session: Session) -> dict:
        with self._player_room(session, Stage.VOTING) as (room, player):
            balance = player.ensure_tokens(self.default_tokens)
            answers = [
                {'id': p.id, 'answer': p.answer}
                for p in room.players
                if p.id != player.id and p.answer is not None
            ]
            return {
                'answers': answers,
                'unit': room.current_question.unit,
                'token_balance': balance,
            }

    def confirm_wagers(self, session: Session, wagers, remaining_tokens) -> None:
        with self._player_room(session, Stage.VOTING, Stage.SETTLING) as (room, player):
            parsed = self._parse_wagers(room, player, wagers)
            if room.stage is Stage.SETTLING:
                # A retry of the confirmation that closed voting is accepted as-is
                if player.wagers == parsed:
                    return
                raise PreconditionError('Voting is already closed')

            balance = player.ensure_tokens(self.default_tokens)
            remaining = parse_token_count(remaining_tokens, 'Remaining tokens')
            if remaining > balance:
                raise ResourceExhaustedError('Not enough tokens')
            if sum(w.stake for w in parsed) > balance:
                raise ResourceExhaustedError('Wagers exceed your token balance')
            if player.ready and player.wagers == parsed:
                return

            player.wagers = parsed
            player.ready = True
            self.logger.debug(f"[wagers] room={room.room_id} player={player.id} count={len(parsed)} remaining={remaining}")
            self.notifier.broadcast(room.room_id, 'player-ready-updated', {'id': player.id, 'ready': True})
            self._attempt_advance(room)

    def get_voting_results(self, session: Session) -> dict:
        with self._player_room(session, Stage.SETTLING) as (room, player):
            result = room.last_result
            return {
                'correct_answer': result.correct_answer,
                'closest_below': result.closest_below,
                'unit': result.unit,
                'self_tokens': player.tokens,
                'all_tokens': [
                    {
                        'id': p.id,
                        'username': p.username,
                        'tokens': p.tokens,
                        'delta': result.deltas.get(p.id, 0),
                    }
                    for p in room.players
                ],
            }

    def get_player_rankings(self, session: Session) -> List[dict]:
        with self._player_room(session, Stage.ANSWERING, Stage.VOTING, Stage.SETTLING, Stage.ENDED) as (room, _):
            return rankings(room.players, self.default_tokens)

    # ---- Disconnects ----

    def disconnect(self, connection_id: str) -> None:
        """Drop the connection's player and let the room carry on without it."""
        with self._sessions_lock:
            session = self.sessions.pop(connection_id, None)
        if session is None or session.room_id is None:
            return
        room = self.registry.get_room(session.room_id)
        if room is None:
            return
        with room.lock:
            if room.deleted:
                return
            player = room.find_player(connection_id)
            if player is None:
                return
            room.players.remove(player)
            self.logger.info(f"[player-left] room={room.room_id} player={connection_id} stage={room.stage.value} players={len(room.players)}")
            if not room.players:
                self.registry.delete_room(room.room_id)
                self.logger.info(f"[room-deleted] room={room.room_id} empty")
                return
            self.notifier.broadcast(room.room_id, 'player-disconnected', {'id': connection_id})
            self._broadcast_roster(room)
            # A departed player can no longer block the stage
            self._attempt_advance(room)

    # ---- Stage machine ----

    def _attempt_advance(self, room: Room) -> bool:
        """Advance the room if everyone still in it is done with this stage.

        Caller must hold ``room.lock``. Returns True when a transition fired.
        """
        if room.deleted or not room.everyone_ready():
            return False
        if room.stage is Stage.LOBBY:
            self._enter_round(room, 0, 'all-ready')
        elif room.stage is Stage.ANSWERING:
            self._transition(room, Stage.VOTING)
            self.notifier.broadcast(room.room_id, 'all-answered', {'round': room.round_index})
        elif room.stage is Stage.VOTING:
            self._settle(room)
        else:
            return False
        return True

    def _transition(self, room: Room, stage: Stage) -> None:
        previous = room.stage
        room.stage = stage
        room.reset_ready()
        room.advance_generation()
        self.logger.info(f"[stage] room={room.room_id} round={room.round_index} {previous.value} -> {stage.value} gen={room.generation}")

    def _enter_round(self, room: Room, round_index: int, event: str) -> None:
        room.round_index = round_index
        for player in room.players:
            player.reset_round()
        room.last_result = None
        self._transition(room, Stage.ANSWERING)
        self.notifier.broadcast(room.room_id, event, {'question': room.question_payload()})

    def _settle(self, room: Room) -> None:
        self._transition(room, Stage.SETTLING)
        room.last_result = calculate_tokens(
            room.players, room.current_question, room.round_index,
            self.default_tokens, self.minimum_tokens,
        )
        self.logger.info(f"[settle] room={room.room_id} round={room.round_index} deltas={room.last_result.deltas}")
        self.notifier.broadcast(room.room_id, 'all-voted', {'round': room.round_index})
        self._arm_round_timers(room)

    # ---- Scheduled transitions ----

    def _arm_round_timers(self, room: Room) -> None:
        generation = room.generation
        delay = self.inner_ranking_timeout
        room.tasks.append(self.scheduler.call_later(delay, self._reveal_ranking, room.room_id, generation))
        room.tasks.append(self.scheduler.call_later(2 * delay, self._advance_or_end, room.room_id, generation))
        self.logger.info(f"[timer-set] room={room.room_id} round={room.round_index} gen={generation} delay={delay}s")

    @contextmanager
    def _timer_room(self, room_id: str, generation: int, name: str):
        room = self.registry.get_room(room_id)
        if room is None:
            self.logger.info(f"[timer-abort] {name} room={room_id} no longer exists")
            yield None
            return
        with room.lock:
            if room.deleted or room.generation != generation or room.stage is not Stage.SETTLING:
                self.logger.info(f"[timer-abort] {name} room={room_id} expected_gen={generation} actual_gen={room.generation}")
                yield None
                return
            self.logger.info(f"[timer-fire] {name} room={room_id} round={room.round_index} gen={generation}")
            yield room

    def _reveal_ranking(self, room_id: str, generation: int) -> None:
        with self._timer_room(room_id, generation, 'reveal-ranking') as room:
            if room is None:
                return
            self.notifier.broadcast(room.room_id, 'show-intermediate-ranking', {
                'round': room.round_index,
                'rankings': rankings(room.players, self.default_tokens),
            })

    def _advance_or_end(self, room_id: str, generation: int) -> None:
        with self._timer_room(room_id, generation, 'advance-or-end') as room:
            if room is None:
                return
            if room.is_last_round:
                self._transition(room, Stage.ENDED)
                self.notifier.broadcast(room.room_id, 'game-ended', {
                    'rankings': rankings(room.players, self.default_tokens),
                })
                return
            self._enter_round(room, room.round_index + 1, 'round-advanced')

    # ---- Helpers ----

    @contextmanager
    def _locked_room(self, room_id):
        room = self.registry.get_room(room_id)
        if room is None:
            raise PreconditionError('Room not found')
        with room.lock:
            if room.deleted:
                raise PreconditionError('Room not found')
            yield room

    @contextmanager
    def _player_room(self, session: Session, *stages: Stage, allow_lobby: bool = False):
        """Lock the session's room and check the action is legal in its stage."""
        with self._locked_room(session.room_id) as room:
            player = room.find_player(session.connection_id)
            if player is None:
                raise PreconditionError('Player not found')
            if room.stage is Stage.LOBBY and not allow_lobby:
                raise PreconditionError('Game has not started yet')
            if room.stage is Stage.ENDED and Stage.ENDED not in stages:
                raise PreconditionError('Game has already ended')
            if stages and room.stage not in stages:
                raise PreconditionError(f'Not allowed during the {room.stage.value} stage')
            yield room, player

    def _ensure_not_in_room(self, session: Session) -> None:
        if session.room_id is not None and self.registry.get_room(session.room_id) is not None:
            raise PreconditionError('Already in a room')

    def _validate_username(self, username) -> str:
        if not isinstance(username, str) or not username.strip():
            raise ValidationError('Username must not be empty')
        name = username.strip()
        if len(name) > self.max_username_length:
            raise ValidationError(f'Username must be at most {self.max_username_length} characters')
        return name

    def _parse_wagers(self, room: Room, player: Player, wagers) -> List[Wager]:
        if wagers is None:
            wagers = []
        if not isinstance(wagers, (list, tuple)):
            raise ValidationError('Wagers must be a list')
        parsed: List[Wager] = []
        seen = set()
        for item in wagers:
            if not isinstance(item, dict):
                raise ValidationError('Each wager needs a target_id and a stake')
            target_id = item.get('target_id')
            target = room.find_player(target_id) if isinstance(target_id, str) else None
            if target is None:
                raise ValidationError('Unknown wager target')
            if target.id == player.id:
                raise ValidationError('Cannot wager on your own answer')
            if target.answer is None:
                raise ValidationError('Cannot wager on a player without an answer')
            if target.id in seen:
                raise ValidationError('Duplicate wager target')
            seen.add(target.id)
            parsed.append(Wager(target_id=target.id, stake=parse_token_count(item.get('stake'), 'Stake')))
        return parsed

    def _broadcast_roster(self, room: Room) -> None:
        self.notifier.broadcast(room.room_id, 'roster-updated', {
            'room_id': room.room_id,
            'players': [p.to_dict() for p in room.players],
        })


def parse_answer(raw_value):
    """Numeric answer from raw input; rejects non-numbers and negatives."""
    if isinstance(raw_value, bool):
        raise ValidationError('Answer must be a number')
    if isinstance(raw_value, (int, float)):
        value = raw_value
    elif isinstance(raw_value, str):
        try:
            value = float(raw_value.strip().replace(',', '.'))
        except ValueError:
            raise ValidationError('Answer must be a number')
    else:
        raise ValidationError('Answer must be a number')
    if not math.isfinite(value):
        raise ValidationError('Answer must be a number')
    if value < 0:
        raise ValidationError('Answer must not be negative')
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def parse_token_count(raw_value, label: str) -> int:
    if isinstance(raw_value, bool):
        raise ValidationError(f'{label} must be a whole number')
    if isinstance(raw_value, float) and raw_value.is_integer():
        raw_value = int(raw_value)
    if not isinstance(raw_value, int):
        raise ValidationError(f'{label} must be a whole number')
    if raw_value < 0:
        raise ValidationError(f'{label} must not be negative')
    return raw_value
