from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import wallet.persistence as persistence_module
from wallet.auth_utils import hash_password, verify_password
from wallet.tokens import TokenExpired, TokenInvalid, TokenService


def test_health_is_public(client: TestClient) -> None:
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_login_returns_token_cookie_and_identity(client: TestClient, settings) -> None:
    res = client.post("/api/login", json={"username": "admin", "password": "AdminPass123"})
    assert res.status_code == 200
    body = res.json()
    assert body["token"]
    assert body["user"]["role"] == "admin"
    assert body["user"]["name"] == settings.admin_name
    set_cookie = res.headers["set-cookie"].lower()
    assert set_cookie.startswith(f"{settings.session_cookie_name}=")
    assert "httponly" in set_cookie
    assert "samesite=strict" in set_cookie

    # the cookie alone authenticates follow-up requests
    me = client.get("/api/me")
    assert me.status_code == 200
    assert me.json()["role"] == "admin"


def test_login_rejects_bad_password(client: TestClient) -> None:
    res = client.post("/api/login", json={"username": "admin", "password": "wrong-password"})
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "UNAUTHENTICATED"


def test_login_validates_payload(client: TestClient) -> None:
    res = client.post("/api/login", json={"username": "ad", "password": "123"})
    assert res.status_code == 400
    error = res.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    fields = {detail["field"] for detail in error["details"]}
    assert {"username", "password"} <= fields


def test_me_requires_token(app: FastAPI) -> None:
    res = TestClient(app).get("/api/me")
    assert res.status_code == 401


def test_tampered_token_is_rejected(client: TestClient, admin_headers) -> None:
    token = admin_headers["Authorization"].split(" ", 1)[1]
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")
    res = client.get("/api/me", headers={"Authorization": f"Bearer {tampered}"})
    assert res.status_code == 401
    assert res.json()["error"]["message"] == "invalid or expired token"


def test_expired_token_is_rejected(client: TestClient, app: FastAPI) -> None:
    tokens: TokenService = app.state.tokens
    issued = datetime.now(timezone.utc) - tokens.ttl - timedelta(minutes=5)
    token = tokens.issue({"id": 1, "role": "admin", "name": "Administrator"}, now=issued)
    res = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_token_signed_with_other_secret_is_rejected(client: TestClient, app: FastAPI) -> None:
    foreign = TokenService("another-secret-key-that-is-long-enough", app.state.tokens.ttl)
    token = foreign.issue({"id": 1, "role": "admin", "name": "Administrator"})
    res = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_logout_clears_cookie(client: TestClient, settings) -> None:
    client.post("/api/login", json={"username": "admin", "password": "AdminPass123"})
    res = client.post("/api/logout")
    assert res.status_code == 200
    assert res.headers["set-cookie"].startswith(f"{settings.session_cookie_name}=")
    assert client.get("/api/me").status_code == 401


@pytest.mark.parametrize(
    ("role", "expected"),
    [("viewer", 403), ("entry", 403), ("admin", 200)],
)
def test_admin_routes_are_gated(client: TestClient, headers_for, role: str, expected: int) -> None:
    res = client.get("/api/users", headers=headers_for(role))
    assert res.status_code == expected


def test_viewer_can_read_but_not_write(client: TestClient, headers_for) -> None:
    viewer = headers_for("viewer")
    assert client.get("/api/operations", headers=viewer).status_code == 200
    assert client.get("/api/stats", headers=viewer).status_code == 200
    res = client.post("/api/operations", data={"date": "2024-01-01", "type": "in", "amount": "10"}, headers=viewer)
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "FORBIDDEN"


def test_token_service_roundtrip_and_failures() -> None:
    service = TokenService("unit-test-secret-key-long-enough-for-hs256", timedelta(hours=1))
    token = service.issue({"id": 7, "role": "entry", "name": "Sara"})
    identity = service.verify(token)
    assert identity.as_dict() == {"id": 7, "role": "entry", "name": "Sara"}

    with pytest.raises(TokenInvalid):
        service.verify("not-a-token")
    old = service.issue({"id": 7, "role": "entry", "name": "Sara"}, now=datetime.now(timezone.utc) - timedelta(hours=2))
    with pytest.raises(TokenExpired):
        service.verify(old)


def test_password_hashing() -> None:
    stored = hash_password("Secret123!")
    assert stored != "Secret123!"
    assert verify_password("Secret123!", stored)
    assert not verify_password("secret123!", stored)
    assert not verify_password("Secret123!", "not-a-hash")


def test_unknown_username_still_checks_a_hash(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    checked: list[str] = []

    def spy(password: str, stored_hash: str) -> bool:
        checked.append(stored_hash)
        return verify_password(password, stored_hash)

    monkeypatch.setattr(persistence_module, "verify_password", spy)
    res = client.post("/api/login", json={"username": "nobody", "password": "whatever1"})
    assert res.status_code == 401
    assert len(checked) == 1
    assert checked[0].startswith("pbkdf2_sha256$")
