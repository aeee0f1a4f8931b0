"""
Configuration for Mini Social, read from environment variables.

Every setting has a development default. In production at least
SOCIAL_DATABASE and SOCIAL_REDIS_URL should be set explicitly; leaving
SOCIAL_REDIS_URL unset runs the cache in-process.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SESSION_LIFETIME_SECONDS = 60 * 60 * 24 * 7  # 7 days
DEFAULT_CACHE_TTL = 3600


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> dict:
    """Collect settings from the environment into a Flask config mapping."""
    return {
        "DATABASE": os.environ.get("SOCIAL_DATABASE", str(BASE_DIR / "social.db")),
        "REDIS_URL": os.environ.get("SOCIAL_REDIS_URL") or None,
        "CACHE_TIMEOUT": float(os.environ.get("SOCIAL_CACHE_TIMEOUT", 2.0)),
        "SESSION_TOKEN_COOKIE": os.environ.get("SOCIAL_SESSION_COOKIE", "sessionToken"),
        "SESSION_TOKEN_COOKIE_SECURE": _env_bool("SOCIAL_COOKIE_SECURE"),
        "CORS_ORIGINS": os.environ.get("SOCIAL_CORS_ORIGINS", "*"),  # set to origin(s) in prod
        "MAX_CONTENT_LENGTH": int(os.environ.get("SOCIAL_MAX_CONTENT_LENGTH", 1024 * 1024)),
        "LOG_LEVEL": os.environ.get("SOCIAL_LOG_LEVEL", "INFO"),
        "PING_MESSAGE": os.environ.get("PING_MESSAGE", "pong"),
        "GOOGLE_CLIENT_ID": os.environ.get("GOOGLE_CLIENT_ID"),
        "GOOGLE_CLIENT_SECRET": os.environ.get("GOOGLE_CLIENT_SECRET"),
        "GOOGLE_REDIRECT_URI": os.environ.get(
            "GOOGLE_REDIRECT_URI", "http://localhost:5173/auth/google/callback"
        ),
    }
