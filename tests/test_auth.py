import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from auth import create_access_token, validate_access_token
from db import get_db
from routers.dependencies import get_current_user


@pytest.fixture
def whoami_client(test_db):
    app = FastAPI()

    @app.get("/whoami")
    def whoami(user=Depends(get_current_user)):
        return {"account_id": user.account_id}

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def test_token_round_trip():
    token = create_access_token(1001)
    assert validate_access_token(token) == 1001


def test_expired_token_is_rejected():
    token = create_access_token(1001, expires_minutes=-1)
    with pytest.raises(HTTPException) as exc:
        validate_access_token(token)
    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"


def test_garbage_token_is_rejected():
    with pytest.raises(HTTPException) as exc:
        validate_access_token("not.a.jwt")
    assert exc.value.status_code == 401


def test_bearer_header_resolves_user(whoami_client, alice):
    token = create_access_token(alice.account_id)
    response = whoami_client.get("/whoami", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json() == {"account_id": alice.account_id}


def test_missing_header_and_unknown_user(whoami_client):
    response = whoami_client.get("/whoami")
    assert response.status_code == 401
    assert response.json()["detail"] == "Authorization token missing."

    response = whoami_client.get("/whoami", headers={"Authorization": "Token abc"})
    assert response.status_code == 401

    token = create_access_token(424242)
    response = whoami_client.get("/whoami", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_health_endpoint_sets_request_id():
    from main import app

    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert len(response.headers["X-Request-ID"]) == 8

        root = client.get("/").json()
        assert root["status"] == "online"
