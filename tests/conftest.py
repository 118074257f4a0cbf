import importlib

import pytest
from flask import Flask

import database


@pytest.fixture
def make_candidate():
    def _make(candidate_id, gender, origin_school='', full_name=None, **extra):
        candidate = {
            'id': candidate_id,
            'full_name': full_name or f"Candidate {candidate_id}",
            'gender': gender,
            'origin_school': origin_school,
            'status': 'accepted',
            'class_name': None,
            'nis': None,
            'is_transferred': 0,
        }
        candidate.update(extra)
        return candidate
    return _make


@pytest.fixture
def db_app(tmp_path):
    """Bare Flask app with an initialised database, for testing the data layer directly."""
    flask_app = Flask(__name__)
    flask_app.config['DATABASE'] = str(tmp_path / 'test.db')
    flask_app.teardown_appcontext(database.close_db)
    with flask_app.app_context():
        database.init_db()
        yield flask_app


@pytest.fixture
def app_module(monkeypatch, tmp_path):
    monkeypatch.setenv("SPMB_DATABASE", str(tmp_path / "spmb.db"))
    monkeypatch.setenv("UPLOAD_FOLDER", str(tmp_path / "uploads"))
    monkeypatch.setenv("EXPORT_FOLDER", str(tmp_path / "exports"))
    monkeypatch.setenv("ACADEMIC_YEAR", "2025/2026")
    monkeypatch.setenv("INSTITUTION_NAME", "SMP TEST")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    import app

    mod = importlib.reload(app)
    mod.app.config["TESTING"] = True
    return mod


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()
