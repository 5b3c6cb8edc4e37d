from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from foodshare import api, auth, provision, services
from foodshare.config import settings
from foodshare.database import Base
from foodshare.models import user  # noqa: F401
from foodshare.schemas import UserCreate

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def session_local(tmp_path, monkeypatch):
    """Provide an isolated SQLite database for each test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    for module in (auth, services, provision):
        monkeypatch.setattr(module, "SessionLocal", TestingSessionLocal)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def uploads_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    path.mkdir(parents=True, exist_ok=True)
    monkeypatch.setattr(settings, "uploads_dir", str(path))
    return path


@pytest.fixture
def client(session_local, uploads_dir, monkeypatch):
    monkeypatch.setattr(api.limiter, "enabled", False)
    return TestClient(api.app)


@pytest.fixture
def make_user(session_local):
    """Create a user directly through the service layer."""
    counter = {"n": 0}

    def _make(role: str, name: str | None = None):
        counter["n"] += 1
        return services.register_user(
            UserCreate(
                name=name or f"{role} {counter['n']}",
                email=f"{role.lower()}{counter['n']}@example.com",
                password="secret123",
                role=role,
            )
        )

    return _make


def listing_fields(**overrides):
    now = datetime.utcnow()
    fields = {
        "category": "Bakery",
        "description": "Two trays of bread rolls",
        "quantity": "40 rolls",
        "location": "12 Baker Street",
        "mfg_time": (now - timedelta(hours=2)).isoformat(),
        "expiry_time": (now + timedelta(days=1)).isoformat(),
        "max_claims": "2",
    }
    fields.update(overrides)
    return fields


def register(client, role: str, email: str, name: str = "Test User"):
    resp = client.post(
        "/auth/register",
        json={"name": name, "email": email, "password": "secret123", "role": role},
    )
    assert resp.status_code == 201, resp.text
    data = resp.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["user"]
