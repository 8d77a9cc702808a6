import os
from fastapi.testclient import TestClient
from peopleflow.main import app

client = TestClient(app)

def _mint_token(user_id="dev-user", org_id=1, role=None) -> str:
    # /auth/token requires JWT_SECRET
    os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-pytest-only-0000000000000000")
    body = {"user_id": user_id, "org_id": org_id}
    if role is not None:
        body["role"] = role
    r = client.post("/auth/token", json=body)
    assert r.status_code == 200, r.text
    return r.json()["access_token"]

def _headers(token: str, org_id=1) -> dict:
    return {"Authorization": f"Bearer {token}", "X-Org-Id": str(org_id)}

def test_missing_authorization_header_401():
    r = client.get("/workflows/templates", headers={"X-Org-Id": "1"})
    assert r.status_code == 401

def test_wrong_scheme_401():
    token = _mint_token()
    r = client.get(
        "/workflows/templates",
        headers={"Authorization": f"Basic {token}", "X-Org-Id": "1"},
    )
    assert r.status_code == 401

def test_garbled_bearer_token_401():
    r = client.get(
        "/workflows/templates",
        headers={"Authorization": "Bearer not-a-real-token", "X-Org-Id": "1"},
    )
    assert r.status_code == 401

def test_missing_org_header_403():
    token = _mint_token()
    r = client.get("/workflows/templates", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 403
    assert "X-Org-Id" in r.text

def test_org_mismatch_403():
    token = _mint_token(org_id=1)
    r = client.patch(
        "/workflows/steps/some-step",
        json={"status": "completed"},
        headers=_headers(token, org_id=2),
    )
    assert r.status_code == 403
    assert "Organization mismatch" in r.text

def test_invalid_role_claim_403():
    token = _mint_token(role="OVERLORD")
    r = client.post("/roles", json={"name": "IT"}, headers=_headers(token))
    assert r.status_code == 403

def test_token_endpoint_hidden_outside_dev(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    r = client.post("/auth/token", json={"user_id": "u", "org_id": 1})
    assert r.status_code == 404
