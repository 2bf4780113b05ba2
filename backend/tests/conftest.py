from pathlib import Path
import pytest
from fastapi.testclient import TestClient


@pytest.fixture(scope="session", autouse=True)
def reset_db():
    """Remove the default SQLite file created when `tutormatch.main` is imported."""
    db_path = Path(__file__).resolve().parents[1] / "app.db"
    yield
    if db_path.exists():
        try:
            db_path.unlink()
        except OSError:
            pass


@pytest.fixture
def protected_dir(tmp_path):
    root = tmp_path / "protected"
    (root / "css").mkdir(parents=True)
    (root / "css" / "site.css").write_text("body { color: #222; }", encoding="utf-8")
    (root / "notes.txt").write_text("protected notes", encoding="utf-8")
    return root


@pytest.fixture
def settings(tmp_path, protected_dir, monkeypatch):
    """Settings pointing at a throwaway database and protected directory."""
    from tutormatch.config import Settings
    monkeypatch.delenv("CONFIG_FILE", raising=False)
    monkeypatch.setenv("ENV", "dev")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("PROTECTED_DIR", str(protected_dir))
    monkeypatch.setenv("ADMIN_USERNAME", "admin")
    monkeypatch.setenv("ADMIN_PASSWORD", "admin-pass")
    return Settings()


@pytest.fixture
def client(settings):
    """Client for the full application, redirects left unfollowed."""
    from tutormatch.main import create_app
    return TestClient(create_app(settings), follow_redirects=False)


@pytest.fixture
def admin_client(client):
    r = client.post('/account/login', json={'username': 'admin', 'password': 'admin-pass'})
    assert r.status_code == 200
    return client
