from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

import app as app_module
import auth
import db

TEST_API_KEY = "test-api-key"


@pytest.fixture()
def db_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point the sqlite helpers at a throwaway database with the schema created."""
    path = tmp_path / "registrants.db"
    monkeypatch.setattr(db, "DB_FILE", path)
    db.init_db()
    return path


@pytest.fixture()
def client(db_file: Path) -> Iterator[TestClient]:
    application = app_module.create_app(api_key_hash=auth.hash_api_key(TEST_API_KEY, rounds=4))
    with TestClient(application) as test_client:
        yield test_client


@pytest.fixture()
def api_headers() -> dict:
    return {"x-api-key": TEST_API_KEY}
