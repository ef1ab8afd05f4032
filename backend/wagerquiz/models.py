import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

Number = Union[int, float]

# Token balance of a player who has not wagered yet in this room.
UNSET_TOKENS = -1


class Stage(str, Enum):
    LOBBY = 'lobby'
    ANSWERING = 'answering'
    VOTING = 'voting'
    SETTLING = 'settling'
    ENDED = 'ended'


@dataclass(frozen=True)
class Question:
    prompt: str
    correct_answer: Number
    unit: str

    def to_dict(self):
        # Never leaks the correct answer
        return {'prompt': self.prompt, 'unit': self.unit}


@dataclass(frozen=True)
class Wager:
    target_id: str
    stake: int

    def to_dict(self):
        return {'target_id': self.target_id, 'stake': self.stake}


@dataclass
class Player:
    id: str
    username: str
    ready: bool = False
    answer: Optional[Number] = None
    tokens: int = UNSET_TOKENS
    wagers: List[Wager] = field(default_factory=list)

    def ensure_tokens(self, default_tokens: int) -> int:
        if self.tokens == UNSET_TOKENS:
            self.tokens = default_tokens
        return self.tokens

    def reset_round(self) -> None:
        self.ready = False
        self.answer = None
        self.wagers = []

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'ready': self.ready,
        }


@dataclass
class RoundResult:
    round_index: int
    correct_answer: Number
    closest_below: Optional[Number]
    unit: str
    deltas: Dict[str, int] = field(default_factory=dict)


@dataclass
class Session:
    """Per-connection record; ``room_id`` is set once the socket joins a room."""
    connection_id: str
    room_id: Optional[str] = None


@dataclass
class Room:
    room_id: str
    deck: List[Question]
    question_limit: int
    players: List[Player] = field(default_factory=list)
    stage: Stage = Stage.LOBBY
    round_index: int = -1
    # Bumped on every stage transition; deferred work captures it and
    # no-ops when it no longer matches.
    generation: int = 0
    last_result: Optional[RoundResult] = None
    deleted: bool = False
    tasks: list = field(default_factory=list, repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def find_player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def has_username(self, username: str) -> bool:
        wanted = username.casefold()
        return any(p.username.casefold() == wanted for p in self.players)

    def everyone_ready(self) -> bool:
        return bool(self.players) and all(p.ready for p in self.players)

    def reset_ready(self) -> None:
        for player in self.players:
            player.ready = False

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.round_index < len(self.deck):
            return self.deck[self.round_index]
        return None

    @property
    def is_last_round(self) -> bool:
        return self.round_index >= self.question_limit - 1

    def question_payload(self):
        question = self.current_question
        if question is None:
            return None
        payload = question.to_dict()
        payload['round'] = self.round_index
        payload['question_limit'] = self.question_limit
        return payload

    def advance_generation(self) -> int:
        """Invalidate every pending task armed under the previous generation."""
        self.generation += 1
        self.cancel_tasks()
        return self.generation

    def cancel_tasks(self) -> None:
        for task in self.tasks:
            task.cancel()
        self.tasks = []

    def to_dict(self):
        return {
            'room_id': self.room_id,
            'stage': self.stage.value,
            'round': self.round_index,
            'question_limit': self.question_limit,
            'players': [p.to_dict() for p in self.players],
        }
