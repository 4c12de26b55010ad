import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', '8080'))
    # Snapshot of taps/users/chat, fully rewritten on every flush
    DATA_FILE = os.environ.get('DATA_FILE') or os.path.join(BASE_DIR, 'data.json')
    # Debounce window for snapshot writes (seconds). Repeated changes inside it share one write.
    SAVE_DELAY_SEC = float(os.environ.get('SAVE_DELAY_SEC', '2'))
    CHAT_CAPACITY = int(os.environ.get('CHAT_CAPACITY', '500'))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Comma separated; '*' allows any origin
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
