"""Shared test fixtures."""

from datetime import datetime, timezone

import pytest

import db
from api import create_app


@pytest.fixture
def now():
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    """Point the storage layer at a fresh SQLite file."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "flashcards.db")
    db.init_db()
    return db.DB_PATH


@pytest.fixture
def client(tmp_db):
    app = create_app()
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def headers():
    return {"X-User-Id": "1"}
