import random
import threading
from typing import Callable, Dict, List, Optional

from wagerquiz.models import Question, Room

ROOM_ID_DIGITS = 5


def generate_room_id(rng: random.Random) -> str:
    """Random 5-digit room id (10000-99999)."""
    low = 10 ** (ROOM_ID_DIGITS - 1)
    return str(rng.randint(low, 10 * low - 1))


class RoomRegistry:
    """Owns every live room. The only state shared between rooms."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()
        self._rng = rng or random.Random()

    def create_room(self, deck_factory: Callable[[random.Random], List[Question]], question_limit: int) -> Room:
        """Register a fresh lobby room under an id not currently in use."""
        with self._lock:
            room_id = generate_room_id(self._rng)
            # Re-roll on collision instead of clobbering a live room
            while room_id in self._rooms:
                room_id = generate_room_id(self._rng)
            deck = deck_factory(self._rng)
            room = Room(room_id=room_id, deck=deck, question_limit=min(question_limit, len(deck)))
            self._rooms[room_id] = room
            return room

    def get_room(self, room_id) -> Optional[Room]:
        if room_id is None:
            return None
        with self._lock:
            return self._rooms.get(str(room_id))

    def delete_room(self, room_id: str) -> Optional[Room]:
        with self._lock:
            room = self._rooms.pop(room_id, None)
        if room is not None:
            room.deleted = True
            room.cancel_tasks()
        return room

    def __len__(self):
        with self._lock:
            return len(self._rooms)

    def __contains__(self, room_id):
        with self._lock:
            return room_id in self._rooms
