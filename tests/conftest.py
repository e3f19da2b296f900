# tests/conftest.py
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from kodbank_service.config import Settings
from kodbank_service.main import create_app
from kodbank_service.models import User

TEST_PASSWORD = "Secret#123"
TEST_SECRET = "test-secret-key"


class RecordingNotifier:
    """Reemplaza al relay de correo: guarda los links en lugar de enviarlos."""

    def __init__(self):
        self.sent = []

    async def send_password_reset(self, to, reset_link, expire_minutes):
        self.sent.append({"to": to, "link": reset_link, "expire_minutes": expire_minutes})
        return True

    def last_token(self):
        return self.sent[-1]["link"].split("token=", 1)[1]


@pytest.fixture
def settings(tmp_path):
    """Una base SQLite nueva por test y bcrypt con el mínimo de rondas."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'kodbank.db'}",
        jwt_secret_key=TEST_SECRET,
        bcrypt_rounds=10,
        initial_balance=Decimal("1000.00"),
        app_base_url="http://testserver",
    )


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.state.notifier = RecordingNotifier()
    yield app
    app.state.engine.dispose()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def session_factory(app):
    return app.state.session_factory


def register_user(client, email, username="tester", phone="9876543210", password=TEST_PASSWORD):
    r = client.post("/register", json={
        "username": username,
        "email": email,
        "phone": phone,
        "password": password,
    })
    assert r.status_code == 201, r.text
    return r


def login(client, email, password=TEST_PASSWORD):
    r = client.post("/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()


def set_balance(session_factory, email, amount):
    db = session_factory()
    try:
        user = db.query(User).filter(User.email == email).one()
        user.balance = Decimal(amount)
        db.commit()
    finally:
        db.close()


def get_balance(session_factory, email):
    db = session_factory()
    try:
        return db.query(User).filter(User.email == email).one().balance
    finally:
        db.close()


@pytest.fixture
def alice(client):
    """Usuario A registrado y con sesión iniciada (saldo inicial 1000.00)."""
    register_user(client, "alice@example.com", username="alice", phone="9000000001")
    data = login(client, "alice@example.com")
    return {
        "email": "alice@example.com",
        "id": data["user"]["id"],
        "token": data["token"],
        "headers": {"Authorization": f"Bearer {data['token']}"},
    }


@pytest.fixture
def bob(client):
    """Usuario B, destinatario de las transferencias."""
    register_user(client, "bob@example.com", username="bob", phone="9000000002")
    data = login(client, "bob@example.com")
    return {
        "email": "bob@example.com",
        "id": data["user"]["id"],
        "headers": {"Authorization": f"Bearer {data['token']}"},
    }
