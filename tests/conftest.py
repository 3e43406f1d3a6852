import base64
import json
import os
from datetime import timedelta

TEST_DB_FILE = "test_center_lms.db"
TEST_DB_URL = f"sqlite:///./{TEST_DB_FILE}"

# the app's own engine (used by the startup hook) must point at the test DB too
os.environ.setdefault("DATABASE_URL", TEST_DB_URL)

import pytest  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import padding, rsa  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from centerlms.core import config  # noqa: E402
from centerlms.core.deps import get_db  # noqa: E402
from centerlms.core.errors import UpstreamPaymentError  # noqa: E402
from centerlms.core.rate_limit import limiter  # noqa: E402
from centerlms.core.security import hash_password  # noqa: E402
from centerlms.core.signatures import signed_message  # noqa: E402
from centerlms.core.timeutils import utcnow  # noqa: E402
from centerlms.db.base import Base  # noqa: E402
from centerlms.db.session import make_engine  # noqa: E402
from centerlms.main import app  # noqa: E402
from centerlms.models.center import Center  # noqa: E402
from centerlms.models.course import COURSE_TYPE_CENTER, COURSE_TYPE_ONLINE, Course  # noqa: E402
from centerlms.models.enrollment import Enrollment  # noqa: E402
from centerlms.models.notification import Notification  # noqa: E402
from centerlms.models.subscription_payment import SubscriptionPayment  # noqa: E402
from centerlms.models.user import User  # noqa: E402
from centerlms.services.gateway import GatewayPayment, get_gateway  # noqa: E402
from centerlms.services.notifier import Notifier, get_notifier, render  # noqa: E402

engine = make_engine(TEST_DB_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)
CALLBACK_URL = "https://lms.example.com/webhook/payment"


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class RecordingNotifier(Notifier):
    """Keeps every notice instead of emailing it; rendering still runs."""

    def __init__(self):
        self.sent = []

    def deliver(self, kind, recipient, payload):
        subject, _ = render(kind, payload)
        self.sent.append((kind, recipient, payload, subject))

    def kinds(self):
        return [s[0] for s in self.sent]


class FakeGateway:
    def __init__(self):
        self.payments: dict[str, GatewayPayment] = {}
        self.collected = []
        self.unavailable = False

    def collect(self, amount, phone_number, reference, description):
        if self.unavailable:
            raise UpstreamPaymentError()
        payment_id = f"pay_{len(self.collected) + 1:04d}"
        payment = GatewayPayment(
            id=payment_id,
            status="pending",
            amount=amount,
            reference=reference,
            payment_link=f"https://pay.example.com/{payment_id}",
            raw={"id": payment_id, "status": "pending", "amount": amount},
        )
        self.collected.append((amount, phone_number, reference, description))
        self.payments[payment_id] = payment
        return payment

    def get_payment(self, payment_id):
        if self.unavailable:
            raise UpstreamPaymentError()
        return self.payments[payment_id]

    def complete(self, payment_id, status="success"):
        self.payments[payment_id].status = status


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create a fresh schema once for the whole test session."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if os.path.exists(TEST_DB_FILE):
        os.remove(TEST_DB_FILE)


@pytest.fixture(autouse=True)
def seed():
    """Seed a clean minimal dataset for each test; returns the ids."""
    db = TestingSessionLocal()
    try:
        # Clear tables (child -> parent)
        db.query(Notification).delete()
        db.query(SubscriptionPayment).delete()
        db.query(Enrollment).delete()
        db.query(Center).delete()
        db.query(Course).delete()
        db.query(User).delete()
        db.commit()

        now = utcnow()
        # students are on an active trial so the subscription gate stays out of the way
        student = User(
            email="student1@example.com",
            full_name="Student One",
            phone_number="237670000001",
            role="student",
            hashed_password=PASSWORD_HASH,
            trial_started_at=now,
        )
        student2 = User(
            email="student2@example.com",
            full_name="Student Two",
            phone_number="237690000002",
            role="student",
            hashed_password=PASSWORD_HASH,
            trial_started_at=now,
        )
        instructor = User(
            email="instructor1@example.com",
            full_name="Instructor One",
            role="instructor",
            hashed_password=PASSWORD_HASH,
        )
        admin = User(
            email="admin@example.com",
            full_name="Admin",
            role="admin",
            hashed_password=PASSWORD_HASH,
        )
        db.add_all([student, student2, instructor, admin])
        db.commit()

        center_course = Course(
            title="Web Development Bootcamp",
            slug="web-dev-bootcamp",
            price=5000,
            course_type=COURSE_TYPE_CENTER,
            instructor_id=instructor.id,
        )
        online_course = Course(
            title="Python Basics",
            slug="python-basics",
            price=2000,
            course_type=COURSE_TYPE_ONLINE,
            instructor_id=instructor.id,
        )
        db.add_all([center_course, online_course])
        db.commit()

        center_a = Center(
            course_id=center_course.id,
            name="Buea Tech Hub",
            town="Buea",
            capacity=2,
            owner_contact="owner.buea@example.com",
        )
        center_b = Center(
            course_id=center_course.id,
            name="Douala Campus",
            town="Douala",
            capacity=1,
            owner_contact="owner.douala@example.com",
        )
        db.add_all([center_a, center_b])
        db.commit()

        ids = {
            "student": student.id,
            "student2": student2.id,
            "instructor": instructor.id,
            "admin": admin.id,
            "center_course": center_course.id,
            "online_course": online_course.id,
            "center_a": center_a.id,
            "center_b": center_b.id,
        }
        yield ids
    finally:
        db.close()


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(notifier, gateway):
    """Test client that uses the test DB session via dependency override."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_gateway] = lambda: gateway
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    limiter.enabled = True
    limiter.reset()


@pytest.fixture(scope="session")
def webhook_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def webhook_config(monkeypatch, webhook_key):
    pem = webhook_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    monkeypatch.setattr(config, "PAYMENT_WEBHOOK_PUBLIC_KEY", pem.decode("utf-8"))
    monkeypatch.setattr(config, "PAYMENT_CALLBACK_URL", CALLBACK_URL)
    return webhook_key


def sign(key, timestamp: str, body: bytes) -> str:
    signature = key.sign(
        signed_message(timestamp, CALLBACK_URL, body),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    return base64.b64encode(signature).decode("ascii")


def post_webhook(client, key, payload: dict, signature: str | None = None):
    body = json.dumps(payload).encode("utf-8")
    timestamp = str(int(utcnow().timestamp()))
    headers = {
        "Content-Type": "application/json",
        "X-Timestamp": timestamp,
        "X-Signature": signature or sign(key, timestamp, body),
    }
    return client.post("/webhook/payment", content=body, headers=headers)


def login(client, email: str, password: str = PASSWORD) -> str:
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["access_token"]


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def student_headers(client, n: int = 1) -> dict:
    return auth_header(login(client, f"student{n}@example.com"))


def admin_headers(client) -> dict:
    return auth_header(login(client, "admin@example.com"))


def days(n: float) -> timedelta:
    return timedelta(days=n)
