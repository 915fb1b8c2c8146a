import os

# must be set before umbrax.auth is imported
os.environ.setdefault("PBKDF2_ITERS", "1000")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from umbrax.auth import hash_password
from umbrax.models import Rank, User

PASSWORD = "secret-pass"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'umbrax.db'}")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.delenv("DEBUG_ENDPOINTS", raising=False)
    monkeypatch.delenv("ADMIN_BOOTSTRAP_USERNAME", raising=False)
    monkeypatch.delenv("ADMIN_BOOTSTRAP_PASSWORD", raising=False)

    from umbrax import main

    with TestClient(main.app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def engine(client):
    from umbrax import main

    return main.engine


@pytest.fixture
def make_user(engine):
    """Insert a user at the given rank order and return its id."""

    def _make(name: str, rank_order: int, is_sovereign: bool = False, password: str = PASSWORD) -> str:
        with Session(engine) as s:
            rank = s.execute(select(Rank).where(Rank.order == rank_order)).scalars().one()
            u = User(
                habbo_name=name,
                habbo_name_lower=name.lower(),
                password_hash=hash_password(password),
                rank_id=rank.id,
                is_sovereign=is_sovereign,
            )
            s.add(u)
            s.commit()
            return u.id

    return _make


@pytest.fixture
def login_as(client):
    def _login(name: str, password: str = PASSWORD):
        res = client.post("/api/auth/login", json={"habboName": name, "password": password})
        assert res.status_code == 200, res.text
        return res

    return _login
