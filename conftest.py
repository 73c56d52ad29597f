import os
import tempfile
from datetime import timedelta

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="market-lab-uploads-")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import authentication
import models
from config import settings
from database import Base, enable_sqlite_foreign_keys, obtain_db_session
from main import app
from realtime import get_publisher

engine = create_engine(
    settings.SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(engine)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# cheap hashes keep the suite fast
authentication.crypto_ctx.update(bcrypt__rounds=4)

PASSWORD = "Secret123"


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def publish(self, room, event, data):
        self.events.append((room, event, data))

    def for_room(self, room):
        return [(event, data) for r, event, data in self.events if r == room]


app.dependency_overrides[obtain_db_session] = override_get_db


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def publisher():
    recorder = RecordingPublisher()
    app.dependency_overrides[get_publisher] = lambda: recorder
    yield recorder
    app.dependency_overrides.pop(get_publisher, None)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=models.ROLE_CLIENT, status=True, labo_type="Labo médical", email=None,
                   first_name="Amine", last_name="Kaci", subscribed_days=30):
        counter["n"] += 1
        user = models.User(
            first_name=first_name,
            last_name=last_name,
            email=email or f"{role}{counter['n']}@example.com",
            hashed_password=authentication.get_password_hash(PASSWORD),
            phone="0555123456",
            address="12 rue Didouche Mourad, Alger",
            role=role,
            status=status,
            labo_type=labo_type if role == models.ROLE_CLIENT else None,
            payment_methods=[],
        )
        db.add(user)
        db.commit()
        if subscribed_days is not None and role != models.ROLE_ADMIN:
            end = models.utcnow() + timedelta(days=subscribed_days)
            db.add(models.Subscription(
                user_id=user.id,
                type="annual",
                price=1000,
                start=end - timedelta(days=365),
                end=end,
            ))
            db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_product(db):
    def _make_product(supplier, name="Centrifugeuse", price=500.0, quantity=10,
                      product_type="Labo médical", category="Equipement"):
        product = models.Product(
            name=name,
            purchase_price=price * 0.8,
            selling_price=price,
            quantity=quantity,
            category=category,
            delivery_time="3 jours",
            brand="Hettich",
            product_type=product_type,
            images=[],
            supplier_id=supplier.id,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make_product


def auth_header(user):
    return {"Authorization": f"Bearer {authentication.token_for_user(user)}"}


@pytest.fixture
def headers():
    return auth_header


@pytest.fixture
def pdf_file():
    return ("proof.pdf", b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n%%EOF\n", "application/pdf")
