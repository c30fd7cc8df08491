import itertools
import os
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

_IMPORT_DIR = Path(tempfile.mkdtemp(prefix="wallet-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_IMPORT_DIR / 'import.db'}")
os.environ.setdefault("UPLOADS_DIR", str(_IMPORT_DIR / "uploads"))
os.environ.setdefault("BACKUP_DIR", str(_IMPORT_DIR / "backups"))
os.environ.setdefault("BACKUP_ENABLED", "false")

from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from wallet.config import Settings  # noqa: E402
from wallet.main import create_app  # noqa: E402
from wallet.persistence import Persistence  # noqa: E402

ADMIN_PASSWORD = "AdminPass123"
USER_PASSWORD = "Secret123!"

Headers = dict[str, str]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'wallet.db'}",
        jwt_secret="test-secret-key-that-is-long-enough-for-hs256",
        uploads_dir=tmp_path / "uploads",
        backup_dir=tmp_path / "backups",
        backup_enabled=False,
        admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def app(settings: Settings) -> Iterator[FastAPI]:
    application = create_app(settings)
    yield application
    application.state.persistence.dispose()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
def persistence(app: FastAPI) -> Persistence:
    return app.state.persistence


@pytest.fixture
def login(client: TestClient) -> Callable[[str, str], Headers]:
    def _login(username: str, password: str) -> Headers:
        res = client.post("/api/login", json={"username": username, "password": password})
        assert res.status_code == 200, res.text
        # Tests authenticate explicitly through the header.
        client.cookies.clear()
        return {"Authorization": f"Bearer {res.json()['token']}"}

    return _login


@pytest.fixture
def admin_headers(login: Callable[[str, str], Headers], settings: Settings) -> Headers:
    return login(settings.admin_username, ADMIN_PASSWORD)


@pytest.fixture
def headers_for(
    client: TestClient,
    admin_headers: Headers,
    login: Callable[[str, str], Headers],
) -> Callable[[str], Headers]:
    counter = itertools.count(1)

    def _headers_for(role: str) -> Headers:
        if role == "admin":
            return admin_headers
        username = f"{role}{next(counter)}"
        res = client.post(
            "/api/users",
            json={
                "username": username,
                "name": f"{role.title()} User",
                "email": f"{username}@example.com",
                "password": USER_PASSWORD,
                "role": role,
            },
            headers=admin_headers,
        )
        assert res.status_code == 201, res.text
        return login(username, USER_PASSWORD)

    return _headers_for
