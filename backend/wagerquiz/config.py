import os

DEFAULT_QUESTIONS_PATH = os.path.join(os.path.dirname(__file__), 'data', 'questions.json')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    PORT = int(os.environ.get('PORT', '3001'))
    CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
    QUESTIONS_PATH = os.environ.get('QUESTIONS_PATH') or DEFAULT_QUESTIONS_PATH
    # Game rules
    QUESTION_LIMIT = int(os.environ.get('QUESTION_LIMIT', '5'))
    MAX_USERS_PER_ROOM = int(os.environ.get('MAX_USERS_PER_ROOM', '8'))
    MAX_USERNAME_LENGTH = int(os.environ.get('MAX_USERNAME_LENGTH', '20'))
    DEFAULT_TOKENS = int(os.environ.get('DEFAULT_TOKENS', '100'))
    MINIMUM_TOKENS = int(os.environ.get('MINIMUM_TOKENS', '10'))
    # Seconds between settlement and the ranking reveal; the next round
    # (or game end) follows after the same delay again.
    INNER_RANKING_TIMEOUT = float(os.environ.get('INNER_RANKING_TIMEOUT', '5'))
