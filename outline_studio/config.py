import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    WTF_CSRF_TIME_LIMIT = None

    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL")
    GENERATION_MODEL = os.environ.get("GENERATION_MODEL", "gpt-4o-mini")
    CHAPTER_MODEL = os.environ.get("CHAPTER_MODEL", "gpt-4o")
    GENERATION_MAX_TOKENS = _int_env("GENERATION_MAX_TOKENS", 4096)

    DEFAULT_CHAPTER_COUNT = _int_env("DEFAULT_CHAPTER_COUNT", 15)
    MAX_CHAPTER_COUNT = _int_env("MAX_CHAPTER_COUNT", 100)


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    OPENAI_API_KEY = None
