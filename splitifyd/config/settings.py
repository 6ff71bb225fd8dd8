import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


class Settings:
    # Firebase / Firestore
    FIREBASE_CREDENTIALS = os.environ.get("FIREBASE_CREDENTIALS", "")
    FIREBASE_PROJECT_ID = os.environ.get("FIREBASE_PROJECT_ID", "")

    # List endpoints
    PAGINATION_DEFAULT_LIMIT = _int_env("PAGINATION_DEFAULT_LIMIT", 20)
    PAGINATION_MAX_LIMIT = _int_env("PAGINATION_MAX_LIMIT", 100)

    # Comments
    COMMENT_MAX_LENGTH = _int_env("COMMENT_MAX_LENGTH", 500)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


settings = Settings()
