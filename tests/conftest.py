import pytest

from mini_social import create_app
from mini_social.cache import CacheStore
from mini_social.repository import find_user_by_id
from mini_social.sessions import SessionStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def app(tmp_path, cache, clock):
    app = create_app(
        {
            "TESTING": True,
            "DATABASE": str(tmp_path / "social-test.db"),
            "REDIS_URL": None,
            "GOOGLE_CLIENT_ID": None,
            "GOOGLE_CLIENT_SECRET": None,
        },
        cache=cache,
        sessions=SessionStore(find_user_by_id, clock=clock),
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def bare_client(app):
    """Client without a cookie jar, for sending raw Cookie headers."""
    return app.test_client(use_cookies=False)


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield


def register(client, name="Ada Lovelace", email="ada@example.com", password="correct-horse"):
    return client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": password, "confirm_password": password},
    )
