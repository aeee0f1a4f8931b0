"""
Request authentication.

``load_request_identity`` runs before every request: it reads the session
cookie, resolves it through the session store and leaves the result in
``flask.g``. It never rejects a request. Handlers that need a logged-in
user use ``login_required`` (or call ``require_authenticated``) and answer
401 themselves.
"""

import functools
import re
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, jsonify, request
from werkzeug.security import check_password_hash, generate_password_hash

from .config import SESSION_LIFETIME_SECONDS


@dataclass(frozen=True)
class RequestIdentity:
    user: Optional[dict] = None
    token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


ANONYMOUS = RequestIdentity()


def get_session_store():
    return current_app.extensions["sessions"]


def authenticate_request(req) -> RequestIdentity:
    token = req.cookies.get(current_app.config["SESSION_TOKEN_COOKIE"])
    if not token:
        return ANONYMOUS
    user = get_session_store().resolve(token)
    if user is None:
        return ANONYMOUS
    return RequestIdentity(user=user, token=token)


def load_request_identity():
    identity = authenticate_request(request)
    g.identity = identity
    g.current_user = identity.user
    g.session_token = identity.token


def current_identity() -> RequestIdentity:
    return g.get("identity", ANONYMOUS)


def require_authenticated():
    """Return None when the request is authenticated, else a 401 response."""
    if current_identity().is_authenticated:
        return None
    return jsonify({"error": "Unauthorized: please log in"}), 401


def login_required(f):
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        denied = require_authenticated()
        if denied is not None:
            return denied
        return f(*args, **kwargs)
    return wrapper


# -----------------------
# Session cookie
# -----------------------
def set_session_cookie(response, token: str):
    response.set_cookie(
        current_app.config["SESSION_TOKEN_COOKIE"],
        token,
        max_age=SESSION_LIFETIME_SECONDS,
        httponly=True,
        secure=current_app.config["SESSION_TOKEN_COOKIE_SECURE"],
        samesite="Lax",
    )
    return response


def clear_session_cookie(response):
    response.delete_cookie(
        current_app.config["SESSION_TOKEN_COOKIE"],
        httponly=True,
        secure=current_app.config["SESSION_TOKEN_COOKIE_SECURE"],
        samesite="Lax",
    )
    return response


# -----------------------
# Passwords
# -----------------------
def hash_password(password: str) -> str:
    # werkzeug's default method is salted scrypt
    return generate_password_hash(password)


def verify_password(password_hash: Optional[str], password: str) -> bool:
    if not password_hash:
        return False  # OAuth-only account
    return check_password_hash(password_hash, password)


# -----------------------
# Validation helpers
# -----------------------
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
HANDLE_RE = re.compile(r"^[a-zA-Z0-9_]{3,20}$")
MIN_PASSWORD_LENGTH = 8


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))


def is_valid_password(password: str) -> bool:
    return len(password) >= MIN_PASSWORD_LENGTH


def is_valid_handle(handle: str) -> bool:
    return bool(HANDLE_RE.match(handle))


def handle_seed(text: str) -> str:
    """Turn a display name or email local part into a handle candidate."""
    seed = re.sub(r"\s+", "_", text.strip().lower())
    seed = re.sub(r"[^a-z0-9_]", "", seed)[:16]
    return seed if len(seed) >= 3 else f"user_{seed}"
