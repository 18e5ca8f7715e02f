import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("LOG_DIR", "./test-logs")

from bookingcore.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from bookingcore.auth import get_password_hash  # noqa: E402
from bookingcore.clock import utcnow  # noqa: E402
from bookingcore.database import Base, SessionLocal, engine  # noqa: E402
from bookingcore.models import RoleEnum, Room, User  # noqa: E402
from services.reservations.app import app as reservations_app  # noqa: E402
from services.rooms.app import app as rooms_app, room_listing_cache  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

ADMIN_PAYLOAD = {
    "name": "Admin",
    "username": "admin",
    "email": "admin@example.com",
    "password": "Passw0rd!",
    "role": RoleEnum.ADMIN.value,
}

USER_PAYLOAD = {
    "name": "User",
    "username": "user1",
    "email": "user1@example.com",
    "password": "Passw0rd!",
}

OTHER_USER_PAYLOAD = {
    "name": "Other",
    "username": "user2",
    "email": "user2@example.com",
    "password": "Passw0rd!",
}


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    room_listing_cache.invalidate()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def rooms_client() -> Generator[TestClient, None, None]:
    with TestClient(rooms_app) as client:
        yield client


@pytest.fixture()
def reservations_client() -> Generator[TestClient, None, None]:
    with TestClient(reservations_app) as client:
        yield client


def auth_header(users_client: TestClient, username: str, password: str = "Passw0rd!") -> dict[str, str]:
    response = users_client.post(
        "/users/login",
        data={"username": username, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers(users_client) -> dict[str, str]:
    users_client.post("/users/register", json=ADMIN_PAYLOAD)
    return auth_header(users_client, "admin")


@pytest.fixture()
def user_headers(users_client, admin_headers) -> dict[str, str]:
    users_client.post("/users/register", json=USER_PAYLOAD)
    return auth_header(users_client, "user1")


@pytest.fixture()
def other_user_headers(users_client, admin_headers) -> dict[str, str]:
    users_client.post("/users/register", json=OTHER_USER_PAYLOAD)
    return auth_header(users_client, "user2")


@pytest.fixture()
def room_id(rooms_client, admin_headers) -> int:
    response = rooms_client.post(
        "/rooms",
        json={
            "name": "Focus Room",
            "capacity": 6,
            "hourly_rate": "30.00",
            "equipment": ["tv", "whiteboard"],
            "location": "Floor 2",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture()
def slot() -> Callable[..., tuple[datetime, datetime]]:
    """Build a future ``(start, end)`` pair relative to a base a day ahead."""

    base = utcnow().replace(minute=0, second=0, microsecond=0) + timedelta(days=1)

    def build(start_hour: float = 0, hours: float = 1) -> tuple[datetime, datetime]:
        start = base + timedelta(hours=start_hour)
        return start, start + timedelta(hours=hours)

    return build


@pytest.fixture()
def seeded(db_session) -> dict[str, int]:
    """A regular user, an admin and two rooms written straight to the database."""

    owner = User(
        name="Owner",
        username="owner",
        email="owner@example.com",
        role=RoleEnum.REGULAR,
        hashed_password=get_password_hash("Passw0rd!"),
    )
    admin = User(
        name="Manager",
        username="manager",
        email="manager@example.com",
        role=RoleEnum.FACILITY_MANAGER,
        hashed_password=get_password_hash("Passw0rd!"),
    )
    small = Room(name="Huddle", capacity=4, hourly_rate=Decimal("30.00"), equipment=["tv"], location="Floor 1")
    large = Room(name="Board", capacity=20, hourly_rate=Decimal("100.00"), equipment=[], location="Floor 3")
    db_session.add_all([owner, admin, small, large])
    db_session.commit()
    return {"owner": owner.id, "admin": admin.id, "small": small.id, "large": large.id}
