"""
Pytest fixtures for test database, client, collaborators and authentication.

Each test gets a fresh schema. The default backend is a throwaway SQLite file
so the suite runs without services; point TEST_DATABASE_URL at a PostgreSQL
database to exercise row locks and serializable isolation for real.
"""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rental_booking.main import app
from rental_booking.api.deps import get_payment_provider, get_rate_limiter, get_task_queue
from rental_booking.db.base import Base
from rental_booking.db.session import get_db, get_session_factory
from rental_booking.core.security import create_access_token, hash_password
from rental_booking.models.admin import ADMIN_ROLE, STAFF_ROLE, AdminUser, ContractVersion
from rental_booking.models.delivery import DeliverySlot
from rental_booking.services.interfaces.memory_task_queue import InMemoryTaskQueue
from rental_booking.services.interfaces.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    PaymentProvider,
    ProviderEvent,
    WebhookSignatureError,
)
from rental_booking.services.interfaces.rate_limiter import InMemoryRateLimiter

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")
VALID_SIGNATURE = "t=1,v1=valid"


class FakePaymentProvider(PaymentProvider):
    """Accepts VALID_SIGNATURE only and records every outbound call."""

    def __init__(self):
        self.checkout_requests: list[CheckoutRequest] = []
        self.annotated: list[tuple[str, str]] = []
        self.fail_annotate = False

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError("No signatures found matching the expected signature")
        body = json.loads(payload)
        return ProviderEvent(id=body["id"], type=body["type"], data_object=body["data"]["object"])

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        self.checkout_requests.append(request)
        session_id = f"cs_test_{len(self.checkout_requests)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")

    async def annotate_invoice(self, invoice_id: str, description: str) -> None:
        if self.fail_annotate:
            raise ConnectionError("provider unavailable")
        self.annotated.append((invoice_id, description))


@dataclass
class BookingHandle:
    id: str
    token: str
    headers: dict = field(default_factory=dict)


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = create_async_engine(url, echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def task_queue() -> InMemoryTaskQueue:
    return InMemoryTaskQueue()


@pytest.fixture
def rate_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter()


@pytest.fixture
def payment_provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def worker_ctx(session_factory, payment_provider, task_queue) -> dict:
    """The context the worker hands to every job."""
    return {
        "session_factory": session_factory,
        "payment_provider": payment_provider,
        "task_queue": task_queue,
    }


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory, task_queue, rate_limiter, payment_provider
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the DB and every collaborator swapped for test doubles."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_task_queue] = lambda: task_queue
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def new_booking(client: AsyncClient):
    """Create a booking through the API and return its id and access headers."""

    async def _create() -> BookingHandle:
        response = await client.post("/api/v1/bookings")
        assert response.status_code == 201
        body = response.json()
        # Requests authenticate by header so several bookings can coexist
        client.cookies.clear()
        return BookingHandle(
            id=body["booking_id"],
            token=body["access_token"],
            headers={"X-Booking-Token": body["access_token"]},
        )

    return _create


def step_payloads(slot_id: Optional[str] = None) -> dict:
    return {
        1: {"serviceZip": "77005", "hasHookups": True},
        "2a": {"packageType": "WASHER_DRYER"},
        "2b": {"termType": "SIX_MONTH"},
        3: {
            "customerName": "Jane Doe",
            "customerEmail": "jane@example.com",
            "customerPhone": "(713) 555-0100",
            "addressLine1": "123 Main St",
            "city": "Houston",
            "state": "tx",
            "zip": "77005",
            "floor": 2,
            "hasElevator": True,
        },
        4: {"dryerPlugType": "FOUR_PRONG", "hasHotColdValves": True, "hasDrainAccess": True},
        5: {"deliverySlotId": slot_id},
        6: {"authorizeRecurring": True},
        7: {"contractAccepted": True, "signerName": "Jane Doe"},
    }


@pytest.fixture
def payloads():
    """Valid payload per step; call with the delivery slot id for step 5."""
    return step_payloads


@pytest.fixture
def submit_step(client: AsyncClient):
    async def _submit(booking: BookingHandle, step: int, data: dict):
        return await client.patch(
            f"/api/v1/bookings/{booking.id}",
            json={"step": step, "data": data},
            headers=booking.headers,
        )

    return _submit


@pytest.fixture
def advance_booking(submit_step):
    """Submit valid payloads for every step up to and including `through`."""

    async def _advance(booking: BookingHandle, through: int, slot_id: Optional[str] = None) -> dict:
        payloads = step_payloads(slot_id)
        sequence = [(1, payloads[1]), (2, payloads["2a"]), (2, payloads["2b"]),
                    (3, payloads[3]), (4, payloads[4]), (5, payloads[5]), (6, payloads[6])]
        body = {}
        for step, data in sequence:
            if step > through:
                break
            response = await submit_step(booking, step, data)
            assert response.status_code == 200, response.text
            body = response.json()
        return body

    return _advance


async def _add_slot(db_session: AsyncSession, capacity: int, days_ahead: int = 1, active: bool = True) -> DeliverySlot:
    start = (datetime.now(timezone.utc) + timedelta(days=days_ahead)).replace(
        hour=8, minute=0, second=0, microsecond=0
    )
    slot = DeliverySlot(
        date=start.date(),
        window_label="8am - 12pm",
        window_start=start,
        window_end=start + timedelta(hours=4),
        capacity=capacity,
        is_active=active,
    )
    db_session.add(slot)
    await db_session.commit()
    await db_session.refresh(slot)
    return slot


@pytest_asyncio.fixture
async def delivery_slot(db_session: AsyncSession) -> DeliverySlot:
    """A morning window tomorrow with room for two deliveries."""
    return await _add_slot(db_session, capacity=2)


@pytest_asyncio.fixture
async def single_slot(db_session: AsyncSession) -> DeliverySlot:
    """A window with room for exactly one delivery."""
    return await _add_slot(db_session, capacity=1, days_ahead=2)


@pytest_asyncio.fixture
async def inactive_slot(db_session: AsyncSession) -> DeliverySlot:
    return await _add_slot(db_session, capacity=5, days_ahead=3, active=False)


@pytest_asyncio.fixture
async def contract_version(db_session: AsyncSession) -> ContractVersion:
    contract = ContractVersion(
        version="2024.1",
        title="Residential Rental Agreement",
        document_url="https://example.com/agreement-2024-1.pdf",
        effective_date=datetime.now(timezone.utc) - timedelta(days=30),
    )
    db_session.add(contract)
    await db_session.commit()
    await db_session.refresh(contract)
    return contract


async def _add_admin(db_session: AsyncSession, email: str, role: str, is_active: bool = True) -> AdminUser:
    user = AdminUser(
        email=email,
        name=email.split("@")[0].title(),
        hashed_password=hash_password("adminpassword123"),
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> AdminUser:
    return await _add_admin(db_session, "owner@example.com", ADMIN_ROLE)


@pytest_asyncio.fixture
async def staff_user(db_session: AsyncSession) -> AdminUser:
    return await _add_admin(db_session, "dispatch@example.com", STAFF_ROLE)


@pytest_asyncio.fixture
async def admin_headers(admin_user: AdminUser) -> dict:
    token = create_access_token(data={"sub": admin_user.id, "role": admin_user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def staff_headers(staff_user: AdminUser) -> dict:
    token = create_access_token(data={"sub": staff_user.id, "role": staff_user.role})
    return {"Authorization": f"Bearer {token}"}


def provider_event(event_id: str, event_type: str, data_object: dict) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": data_object}}).encode()


@pytest.fixture
def post_webhook(client: AsyncClient):
    async def _post(event_id: str, event_type: str, data_object: dict, signature: str = VALID_SIGNATURE):
        return await client.post(
            "/api/v1/webhooks/payments",
            content=provider_event(event_id, event_type, data_object),
            headers={"stripe-signature": signature, "content-type": "application/json"},
        )

    return _post
