import os
import sys
from datetime import datetime, timedelta, timezone

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from housing_service.main import app
from housing_service import auth as auth_service
from housing_service import config, models
from housing_service.auth import effective_role
from housing_service.database import Base, SessionLocal, engine
from housing_service.errors import InvalidToken, UpstreamError
from housing_service.google_identity import get_google_verifier
from housing_service.mailer import get_mailer
from housing_service.models import UserRole

client = TestClient(app)

STRONG_PASSWORD = "Secret123!"


class FakeMailer:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send_verification_code(self, to, code):
        if self.fail:
            raise UpstreamError("Error sending verification code")
        self.sent.append((to, code))


class FakeGoogle:
    def __init__(self, profile=None, error=None):
        self.profile = profile
        self.error = error
        self.calls = []

    def resolve(self, credential=None, access_token=None):
        self.calls.append((credential, access_token))
        if self.error:
            raise self.error
        return self.profile


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


def make_token(user_id: int, email: str, role: str = "user", minutes: int = 30) -> str:
    payload = {
        "userId": user_id,
        "name": email,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, config.ACCESS_TOKEN_SECRET, algorithm=config.ALGORITHM)


def decode(token: str) -> dict:
    return jwt.decode(token, config.ACCESS_TOKEN_SECRET, algorithms=[config.ALGORITHM])


def register(email="alice@example.com", password=STRONG_PASSWORD, **extra):
    return client.post("/register", json={"email": email, "password": password, **extra})


# ---------- register / login ----------

def test_register_returns_token_with_email_claim():
    res = register(email="  Alice@Example.com ")
    assert res.status_code == 201
    claims = decode(res.json()["token"])
    assert claims["name"] == "alice@example.com"
    assert claims["role"] == "user"
    assert isinstance(claims["userId"], int)


def test_register_duplicate_email_rejected():
    assert register().status_code == 201
    res = register()
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "User already exists"
    assert body["service"] == "housing"
    assert body["path"] == "/register"
    assert body["method"] == "POST"
    assert body["status_code"] == 400


def test_register_race_on_unique_email_is_400(monkeypatch):
    assert register().status_code == 201

    # both requests pass the lookup before either commits
    monkeypatch.setattr(auth_service, "get_user_by_email", lambda db, email: None)
    res = register()
    assert res.status_code == 400
    assert res.json()["message"] == "User already exists"

    monkeypatch.undo()
    assert client.post(
        "/login", json={"email": "alice@example.com", "password": STRONG_PASSWORD}
    ).status_code == 200


def test_send_code_race_on_unique_email_is_400(monkeypatch):
    app.dependency_overrides[get_mailer] = lambda: FakeMailer()
    assert register().status_code == 201

    monkeypatch.setattr(auth_service, "get_user_by_email", lambda db, email: None)
    res = client.post("/auth/send-code", json={"email": "alice@example.com"})
    assert res.status_code == 400


def test_register_weak_password_lists_every_problem():
    res = register(password="weakpassword")
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "Validation failed"
    messages = " ".join(e["message"] for e in body["errors"] if e["path"] == ["password"])
    assert "uppercase" in messages
    assert "number" in messages
    assert "special" in messages


def test_register_confirm_must_match():
    res = register(confirm="Different123!")
    assert res.status_code == 400


def test_register_rejects_unknown_fields():
    res = register(role="admin")
    assert res.status_code == 400


def test_login_success():
    register()
    res = client.post("/login", json={"email": "alice@example.com", "password": STRONG_PASSWORD})
    assert res.status_code == 200
    assert decode(res.json()["token"])["name"] == "alice@example.com"


def test_login_failures_share_one_message():
    register()
    wrong_pw = client.post("/login", json={"email": "alice@example.com", "password": "Nope1234!"})
    unknown = client.post("/login", json={"email": "bob@example.com", "password": STRONG_PASSWORD})
    assert wrong_pw.status_code == 400
    assert unknown.status_code == 400
    assert wrong_pw.json()["message"] == unknown.json()["message"] == "Invalid email or password"


def test_login_without_password_points_to_code_flow():
    db = SessionLocal()
    db.add(models.User(email="codeonly@example.com"))
    db.commit()
    db.close()

    res = client.post("/login", json={"email": "codeonly@example.com", "password": STRONG_PASSWORD})
    assert res.status_code == 400
    assert "verification" in res.json()["message"]


def test_admin_allow_list_grants_admin_role():
    res = register(email="boss@example.com")
    assert decode(res.json()["token"])["role"] == "admin"


# ---------- email code ----------

def test_send_and_verify_code_creates_account():
    mailer = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: mailer

    res = client.post("/auth/send-code", json={"email": "new@example.com"})
    assert res.status_code == 200
    assert res.json() == {"message": "Verification code sent"}
    (to, code), = mailer.sent
    assert to == "new@example.com"
    assert len(code) == 6 and code.isdigit()

    res = client.post("/auth/verify-code", json={"email": "new@example.com", "code": code})
    assert res.status_code == 200
    assert decode(res.json()["token"])["name"] == "new@example.com"

    # single use
    again = client.post("/auth/verify-code", json={"email": "new@example.com", "code": code})
    assert again.status_code == 400
    assert again.json()["message"] == "Invalid or expired verification code"


def test_send_code_same_response_for_existing_user():
    mailer = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: mailer
    register()

    res = client.post("/auth/send-code", json={"email": "alice@example.com"})
    assert res.status_code == 200
    assert res.json() == {"message": "Verification code sent"}


def test_verify_code_wrong_code_rejected():
    mailer = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: mailer
    client.post("/auth/send-code", json={"email": "new@example.com"})
    code = mailer.sent[0][1]
    wrong = "000000" if code != "000000" else "111111"

    res = client.post("/auth/verify-code", json={"email": "new@example.com", "code": wrong})
    assert res.status_code == 400


def test_verify_code_expired_rejected():
    mailer = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: mailer
    client.post("/auth/send-code", json={"email": "new@example.com"})
    code = mailer.sent[0][1]

    db = SessionLocal()
    user = db.query(models.User).filter(models.User.email == "new@example.com").first()
    user.verification_code_expires = models.utcnow() - timedelta(minutes=1)
    db.commit()
    db.close()

    res = client.post("/auth/verify-code", json={"email": "new@example.com", "code": code})
    assert res.status_code == 400


def test_verify_code_must_be_six_digits():
    res = client.post("/auth/verify-code", json={"email": "new@example.com", "code": "12ab"})
    assert res.status_code == 400
    assert res.json()["errors"][0]["path"] == ["code"]


def test_send_code_mail_failure_is_502():
    app.dependency_overrides[get_mailer] = lambda: FakeMailer(fail=True)
    res = client.post("/auth/send-code", json={"email": "new@example.com"})
    assert res.status_code == 502


# ---------- google ----------

def test_google_creates_then_reuses_account():
    google = FakeGoogle(
        profile={"sub": "g-1", "email": "Gina@Example.com", "name": "Gina", "picture": "p.png"}
    )
    app.dependency_overrides[get_google_verifier] = lambda: google

    first = client.post("/auth/google", json={"credential": "id-token"})
    second = client.post("/auth/google", json={"access_token": "access"})
    assert first.status_code == 200
    assert second.status_code == 200
    assert decode(first.json()["token"])["userId"] == decode(second.json()["token"])["userId"]
    assert google.calls == [("id-token", None), (None, "access")]

    db = SessionLocal()
    user = db.query(models.User).filter(models.User.email == "gina@example.com").one()
    assert user.google_id == "g-1"
    assert user.picture == "p.png"
    db.close()


def test_google_requires_a_credential():
    res = client.post("/auth/google", json={})
    assert res.status_code == 400


def test_google_invalid_token_is_400():
    app.dependency_overrides[get_google_verifier] = lambda: FakeGoogle(
        error=InvalidToken("Invalid Google token")
    )
    res = client.post("/auth/google", json={"credential": "bad"})
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid Google token"


def test_google_unreachable_is_502():
    app.dependency_overrides[get_google_verifier] = lambda: FakeGoogle(
        error=UpstreamError("Failed to contact Google")
    )
    res = client.post("/auth/google", json={"credential": "anything"})
    assert res.status_code == 502


# ---------- protected routes ----------

def test_missing_token_is_401():
    res = client.get("/api/reviews/user")
    assert res.status_code == 401
    assert res.json()["message"] == "Access denied"


def test_bad_signature_is_400():
    token = jwt.encode(
        {"userId": 1, "name": "a@example.com", "role": "admin"}, "other-secret", algorithm="HS256"
    )
    res = client.get("/api/reviews/user", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 400


def test_expired_token_is_400():
    token = make_token(1, "a@example.com", minutes=-5)
    res = client.get("/api/reviews/user", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 400


def test_user_token_on_admin_route_is_403():
    token = make_token(1, "a@example.com", role="user")
    res = client.get("/api/admin/reviews/pending", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 403
    assert res.json()["message"] == "Admin access required"


def test_effective_role():
    allow = ["boss@example.com"]
    assert effective_role(UserRole.ADMIN, "x@example.com", allow) == UserRole.ADMIN
    assert effective_role(UserRole.USER, "Boss@Example.com", allow) == UserRole.ADMIN
    assert effective_role(UserRole.USER, "x@example.com", allow) == UserRole.USER
    assert effective_role(None, "x@example.com", []) == UserRole.USER
