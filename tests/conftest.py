from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import palavras.app as app_module
from palavras.storage.db import Database


@pytest.fixture()
def temp_db(tmp_path):
    db = Database(tmp_path / "palavras_test.db")
    db.initialize()
    return db


@pytest.fixture()
def client(temp_db, monkeypatch):
    monkeypatch.setattr(app_module, "db", temp_db)
    with TestClient(app_module.app) as c:
        yield c


@pytest.fixture()
def learner(temp_db):
    return temp_db.create_user(email="Ana@Example.com", name="Ana")


@pytest.fixture()
def word(temp_db):
    return temp_db.create_word(portuguese="obrigado", english="thank you", group="Basics")
