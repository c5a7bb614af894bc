import os

# Must be set before the app module creates its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coffeeshop.api import app
from coffeeshop.database import Base
from coffeeshop.dependencies import get_db
from coffeeshop.models import Coupon, CouponTypeEnum, Reward, RoleEnum, User, utcnow
from coffeeshop.security import create_access_token, hash_password


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "s3cret-pass"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, email, role=RoleEnum.CUSTOMER, points=0, full_name="Jane Doe"):
    user = User(
        email=email,
        full_name=full_name,
        hashed_password=hash_password(PASSWORD),
        role=role,
        loyalty_points=points,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    token = create_access_token({"sub": user.email, "user_id": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(db):
    return make_user(db, "jane@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@cafe.com", role=RoleEnum.ADMIN, full_name="Cafe Admin")


@pytest.fixture
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", type=CouponTypeEnum.PERCENTAGE, value=10, **overrides):
        now = utcnow()
        values = {
            "code": code,
            "type": type,
            "value": value,
            "valid_from": now - timedelta(days=1),
            "valid_to": now + timedelta(days=1),
            "current_uses": 0,
            "is_active": True,
        }
        values.update(overrides)
        coupon = Coupon(**values)
        db.add(coupon)
        db.commit()
        db.refresh(coupon)
        return coupon

    return _make


@pytest.fixture
def make_reward(db):
    def _make(name="Free Latte", points=300, active=True):
        reward = Reward(name=name, points=points, image="latte.jpg", active=active)
        db.add(reward)
        db.commit()
        db.refresh(reward)
        return reward

    return _make
