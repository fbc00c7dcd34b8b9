from __future__ import annotations

from sqlalchemy import inspect

from models import storage
from models.refresh_token import RefreshToken
from models.user import User


def test_reload_creates_identity_and_token_tables(app) -> None:
    tables = set(inspect(storage.get_session().get_bind()).get_table_names())

    assert {"users", "refresh_tokens"} <= tables


def test_get_returns_row_or_none(app, make_user) -> None:
    user_id = make_user("alice")

    with app.app_context():
        assert storage.get(User, user_id).username == "alice"
        assert storage.get(User, user_id + 1) is None
        assert storage.get(RefreshToken, 1) is None


def test_user_row_exposes_no_password_attribute(app, make_user) -> None:
    user_id = make_user("alice")

    with app.app_context():
        assert not hasattr(storage.get(User, user_id), "password")
