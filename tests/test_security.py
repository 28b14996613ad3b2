import pytest
from fastapi.testclient import TestClient

from backend.app.core.security import create_access_token, decode_access_token
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.main import app
from backend.app.models.user import User

client = TestClient(app)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def test_create_and_decode_token_contains_sub_and_exp():
    token = create_access_token(user_id=123)
    assert isinstance(token, str) and token
    payload = decode_access_token(token)
    assert payload.get("sub") == "123"
    assert "exp" in payload


def test_expired_token_raises_value_error():
    expired_token = create_access_token(user_id=1, expires_minutes=-1)
    with pytest.raises(ValueError):
        decode_access_token(expired_token)


def test_invalid_token_raises_value_error():
    with pytest.raises(ValueError):
        decode_access_token("invalid.token.value")


def test_routes_reject_unknown_and_inactive_users():
    db = SessionLocal()
    try:
        user = User(email="gone@example.com", role="student", is_active=False)
        db.add(user)
        db.commit()
        db.refresh(user)
        inactive_id = user.id
    finally:
        db.close()

    for user_id in (inactive_id, 9999):
        resp = client.get("/ledger/entries", headers={"Authorization": f"Bearer {create_access_token(user_id)}"})
        assert resp.status_code == 401

    resp = client.get("/ledger/entries", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401
