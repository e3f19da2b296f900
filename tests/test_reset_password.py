# tests/test_reset_password.py
import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from conftest import TEST_PASSWORD, register_user
from kodbank_service import reset_tokens
from kodbank_service.exceptions import KodBankError, ResetTokenAlreadyUsed, StorageUnavailable
from kodbank_service.models import ResetToken, User
from kodbank_service.utils import hash_reset_token, utcnow

NEW_PASSWORD = "Brand#New456"


def request_reset(client, email):
    r = client.post("/forgot-password", json={"email": email})
    assert r.status_code == 200
    return r.json()


def test_forgot_password_response_does_not_reveal_account(client, app):
    register_user(client, "reset@example.com")

    existing = request_reset(client, "reset@example.com")
    missing = request_reset(client, "missing@example.com")

    assert existing == missing
    notifier = app.state.notifier
    assert len(notifier.sent) == 1
    assert notifier.sent[0]["to"] == "reset@example.com"
    assert notifier.sent[0]["link"].startswith("http://testserver/reset-password?token=")


def test_reset_token_is_single_use(client, app):
    register_user(client, "once@example.com")
    request_reset(client, "once@example.com")
    token = app.state.notifier.last_token()

    first = client.post("/reset-password", json={"token": token, "password": NEW_PASSWORD})
    assert first.status_code == 200, first.text

    second = client.post("/reset-password", json={"token": token, "password": "Other#Pass789"})
    assert second.status_code == 400
    assert second.json()["error"] == "TokenAlreadyUsed"

    # Solo la primera contraseña nueva quedó aplicada
    assert client.post("/login", json={"email": "once@example.com", "password": NEW_PASSWORD}).status_code == 200
    assert client.post("/login", json={"email": "once@example.com", "password": TEST_PASSWORD}).status_code == 401


def test_unknown_reset_token(client):
    r = client.post("/reset-password", json={"token": "does-not-exist", "password": NEW_PASSWORD})
    assert r.status_code == 400
    assert r.json()["error"] == "TokenNotFound"


def test_expired_reset_token(client, app, session_factory):
    register_user(client, "late@example.com")
    request_reset(client, "late@example.com")
    token = app.state.notifier.last_token()

    db = session_factory()
    try:
        row = db.query(ResetToken).filter(ResetToken.token_hash == hash_reset_token(token)).one()
        row.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
    finally:
        db.close()

    r = client.post("/reset-password", json={"token": token, "password": NEW_PASSWORD})
    assert r.status_code == 400
    assert r.json()["error"] == "TokenExpired"


def test_new_token_supersedes_older_one(client, app):
    register_user(client, "twice@example.com")
    request_reset(client, "twice@example.com")
    old_token = app.state.notifier.last_token()
    request_reset(client, "twice@example.com")
    new_token = app.state.notifier.last_token()

    old = client.post("/reset-password", json={"token": old_token, "password": NEW_PASSWORD})
    assert old.status_code == 400
    assert old.json()["error"] == "TokenAlreadyUsed"

    new = client.post("/reset-password", json={"token": new_token, "password": NEW_PASSWORD})
    assert new.status_code == 200


def test_reset_enforces_password_policy(client, app):
    register_user(client, "policy@example.com")
    request_reset(client, "policy@example.com")
    token = app.state.notifier.last_token()

    r = client.post("/reset-password", json={"token": token, "password": "weakpass"})
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationError"


def test_only_hash_is_stored(client, session_factory):
    register_user(client, "stored@example.com")
    db = session_factory()
    try:
        token = reset_tokens.create(db, "stored@example.com")
        row = db.query(ResetToken).filter(ResetToken.email == "stored@example.com").one()
        assert row.token_hash == hash_reset_token(token)
        assert token not in row.token_hash
        assert len(token) >= 43  # 256 bits en base64url
    finally:
        db.close()


def test_forgot_password_storage_failure_looks_like_unknown_email(client, app, monkeypatch):
    register_user(client, "flaky@example.com")

    def failing_create(db, email, expire_minutes=30):
        raise StorageUnavailable()

    monkeypatch.setattr(reset_tokens, "create", failing_create)

    existing = client.post("/forgot-password", json={"email": "flaky@example.com"})
    missing = client.post("/forgot-password", json={"email": "nobody@example.com"})

    assert existing.status_code == missing.status_code == 200
    assert existing.json() == missing.json()
    assert app.state.notifier.sent == []


class SlowNotifier:
    """Relay de correo lento que anota cuándo terminó cada envío."""

    def __init__(self, events):
        self.events = events

    async def send_password_reset(self, to, reset_link, expire_minutes):
        await asyncio.sleep(0.2)
        self.events.append(("email", to))
        return True


def post_forgot_password(app, email, events):
    """
    Llama a la app ASGI directamente y anota en events cuándo se envió
    el cuerpo completo de la respuesta.
    """
    body = json.dumps({"email": email}).encode()
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/forgot-password",
        "raw_path": b"/forgot-password",
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"testserver"),
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    chunks = []

    async def run():
        request_sent = False
        response_complete = asyncio.Event()

        async def receive():
            nonlocal request_sent
            if not request_sent:
                request_sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            await response_complete.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            if message["type"] == "http.response.body":
                chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    events.append(("response", email))
                    response_complete.set()

        await app(scope, receive, send)

    asyncio.run(run())
    return json.loads(b"".join(chunks))


def test_forgot_password_responds_before_sending_email(client, app):
    register_user(client, "queued@example.com")
    events = []
    app.state.notifier = SlowNotifier(events)

    existing = post_forgot_password(app, "queued@example.com", events)
    missing = post_forgot_password(app, "nobody@example.com", events)

    assert existing == missing
    assert events == [
        ("response", "queued@example.com"),
        ("email", "queued@example.com"),
        ("response", "nobody@example.com"),
    ]


def test_concurrent_reset_token_consumption(client, session_factory):
    """Varios hilos usan el mismo token a la vez: solo uno lo consume."""
    register_user(client, "race@example.com")
    db = session_factory()
    try:
        token = reset_tokens.create(db, "race@example.com")
    finally:
        db.close()

    new_hash = "$2b$10$" + "x" * 53
    attempts = 8

    def attempt(_):
        session = session_factory()
        try:
            reset_tokens.consume(session, token, new_hash)
            return "ok"
        except ResetTokenAlreadyUsed:
            return "used"
        except KodBankError as e:
            return e.error
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(attempts)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("used") == attempts - 1

    db = session_factory()
    try:
        user = db.query(User).filter(User.email == "race@example.com").one()
        assert user.password == new_hash
    finally:
        db.close()
