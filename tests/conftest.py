from __future__ import annotations

import os

os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402

from api import create_app  # noqa: E402
from models import storage  # noqa: E402
from models.user import User  # noqa: E402
from utils.security import hash_password  # noqa: E402

PASSWORD = "correct-horse-battery"
# scrypt is deliberately slow; hash once per run
PASSWORD_HASH = hash_password(PASSWORD)


def _build_app(tmp_path, **overrides):
    config = {"DATABASE_URL": f"sqlite:///{tmp_path / 'auth.db'}"}
    config.update(overrides)
    return create_app("test", overrides=config)


@pytest.fixture
def app(tmp_path):
    app = _build_app(tmp_path)
    yield app
    storage.close()


@pytest.fixture
def memory_app(tmp_path):
    app = _build_app(tmp_path, TOKEN_STORE_BACKEND="memory")
    yield app
    storage.close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(
        username: str = "alice",
        email: str | None = None,
        password_hash: str | None = PASSWORD_HASH,
        role: str = "member",
        company_id: int | None = None,
        is_active: bool = True,
    ) -> int:
        with app.app_context():
            user = User(
                username=username,
                email=email or f"{username.lower()}@example.com",
                password_hash=password_hash,
                name=username.title(),
                role=role,
                company_id=company_id,
                is_active=is_active,
            )
            storage.new(user)
            storage.save()
            return user.id

    return _make


def login(client, username: str, password: str = PASSWORD):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TransportResponse:
    """Gives a Flask test response the parts of requests.Response the client uses."""

    def __init__(self, response):
        self.status_code = response.status_code
        self._response = response

    def json(self):
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError("response has no JSON body")
        return data


class FlaskTransport:
    """requests.Session stand-in that routes calls into a Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.calls = []
        self.last_authorization = None

    def request(self, method, url, headers=None, json=None, timeout=None, **kwargs):
        self.calls.append((method, url))
        self.last_authorization = (headers or {}).get("Authorization")
        response = self.test_client.open(url, method=method, headers=headers, json=json)
        return TransportResponse(response)
