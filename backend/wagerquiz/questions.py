import json
import math
import random
from typing import List, Optional, Sequence

from wagerquiz.models import Question


def parse_question(record: dict, index: int = 0) -> Question:
    """Build a Question from a ``{question, answer, unit}`` record."""
    if not isinstance(record, dict):
        raise ValueError(f'question #{index}: expected an object, got {type(record).__name__}')
    prompt = record.get('question')
    answer = record.get('answer')
    unit = record.get('unit', '')
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValueError(f'question #{index}: missing question text')
    if isinstance(answer, bool) or not isinstance(answer, (int, float)) or not math.isfinite(answer):
        raise ValueError(f'question #{index}: answer must be a number')
    # Settlement measures distance relative to the answer, so zero is not allowed
    if answer <= 0:
        raise ValueError(f'question #{index}: answer must be greater than zero')
    if not isinstance(unit, str):
        raise ValueError(f'question #{index}: unit must be text')
    return Question(prompt=prompt.strip(), correct_answer=answer, unit=unit)


def load_question_bank(path: str) -> List[Question]:
    with open(path, 'r', encoding='utf-8') as f:
        records = json.load(f)
    if not isinstance(records, list):
        raise ValueError('question bank must be a JSON list')
    return [parse_question(record, i) for i, record in enumerate(records)]


def shuffled_deck(bank: Sequence[Question], rng: Optional[random.Random] = None) -> List[Question]:
    """Independent permutation of the bank for one room."""
    deck = list(bank)
    (rng or random).shuffle(deck)
    return deck
