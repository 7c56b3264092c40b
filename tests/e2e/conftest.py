"""
E2E test fixtures for the quote engine.

Provides:
- A file-backed async SQLite database per test (several sessions can hold
  connections at once, which the concurrency tests need)
- An in-process FastAPI test app with all routes registered; every request
  gets its own committed session, like ``get_db`` in production
- httpx AsyncClient wired via ASGI transport (no network needed)
- Seed users: a buyer, sellers on each plan, a suspended seller, an admin
- Helpers for tokens, creating requests, running the delivery worker and
  submitting quotes, plus backdated requests for expiry and outbox tests

SQLite transactions start with ``BEGIN IMMEDIATE`` so concurrent writers
serialize on the database lock the way row locks serialize them on
PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.ext.compiler import compiles

from quote_engine.core.clock import utcnow
from quote_engine.models import Base


@compiles(JSONB, "sqlite")
def compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

BUYER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
OTHER_BUYER_ID = uuid.UUID("abababab-abab-abab-abab-abababababab")
SELLER_A_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")  # enterprise, Kingston
SELLER_B_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")  # basic, St. Andrew
FREE_SELLER_ID = uuid.UUID("eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee")
SUSPENDED_SELLER_ID = uuid.UUID("ffffffff-ffff-ffff-ffff-ffffffffffff")
ADMIN_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")

DEFAULT_REQUEST = {
    "vehicle_make": "Toyota",
    "vehicle_model": "Corolla",
    "vehicle_year": 2015,
    "part_name": "Alternator",
    "condition_preference": "any",
    "budget": "25000.00",
    "urgency": "medium",
    "parish": "Kingston",
}


# ---------------------------------------------------------------------------
# Async engine + session factory (file-backed SQLite)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'quotes.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, _):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker:
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        await _seed_data(session)
        await session.commit()
    return factory


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

async def _seed_data(db: AsyncSession) -> None:
    """Insert the users every E2E test relies on."""
    from quote_engine.models.user import MembershipPlan, User, UserRole, UserStatus

    now = utcnow()
    db.add_all([
        User(
            id=BUYER_ID,
            email="buyer@test.parts.jm",
            display_name="Andre B.",
            role=UserRole.BUYER,
            parish="Kingston",
            status=UserStatus.ACTIVE,
            email_verified=True,
        ),
        User(
            id=OTHER_BUYER_ID,
            email="buyer2@test.parts.jm",
            display_name="Keisha M.",
            role=UserRole.BUYER,
            status=UserStatus.ACTIVE,
            email_verified=True,
        ),
        User(
            id=SELLER_A_ID,
            email="depot@test.parts.jm",
            display_name="Kingston Parts Depot",
            role=UserRole.SELLER,
            membership_plan=MembershipPlan.ENTERPRISE,
            parish="Kingston",
            status=UserStatus.ACTIVE,
            email_verified=True,
            created_at=now - timedelta(days=300),
        ),
        User(
            id=SELLER_B_ID,
            email="yard@test.parts.jm",
            display_name="Half Way Tree Auto Yard",
            role=UserRole.SELLER,
            membership_plan=MembershipPlan.BASIC,
            parish="St. Andrew",
            status=UserStatus.ACTIVE,
            email_verified=True,
            created_at=now - timedelta(days=200),
        ),
        User(
            id=FREE_SELLER_ID,
            email="free@test.parts.jm",
            display_name="Free Tier Parts",
            role=UserRole.SELLER,
            membership_plan=MembershipPlan.FREE,
            parish="Kingston",
            status=UserStatus.ACTIVE,
            email_verified=True,
        ),
        User(
            id=SUSPENDED_SELLER_ID,
            email="suspended@test.parts.jm",
            display_name="Suspended Spares",
            role=UserRole.SELLER,
            membership_plan=MembershipPlan.PREMIUM,
            parish="Kingston",
            status=UserStatus.SUSPENDED,
            email_verified=True,
        ),
        User(
            id=ADMIN_ID,
            email="admin@test.parts.jm",
            display_name="Admin",
            role=UserRole.ADMIN,
            status=UserStatus.ACTIVE,
            email_verified=True,
        ),
    ])
    await db.flush()


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(session_factory: async_sessionmaker):
    """Build a FastAPI app with all routes registered and ``get_db`` bound
    to the test database."""
    from fastapi import FastAPI

    from quote_engine.api.deps import get_db
    from quote_engine.api.errors import install_error_handlers
    from quote_engine.api.routes.notifications import router as notifications_router
    from quote_engine.api.routes.part_requests import router as part_requests_router
    from quote_engine.api.routes.queue import router as queue_router
    from quote_engine.api.routes.seller import router as seller_router

    app = FastAPI(title="Quote Engine Test")
    install_error_handlers(app)

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db

    app.include_router(part_requests_router, prefix="/api/v1")
    app.include_router(seller_router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(queue_router, prefix="/api/v1")
    return app


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(session_factory)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def auth_headers(user_id: uuid.UUID, role: str) -> dict[str, str]:
    from quote_engine.models.user import UserRole
    from quote_engine.services.auth_service import create_access_token

    token = create_access_token(user_id, UserRole(role))
    return {"Authorization": f"Bearer {token}"}


BUYER = auth_headers(BUYER_ID, "buyer")
OTHER_BUYER = auth_headers(OTHER_BUYER_ID, "buyer")
SELLER_A = auth_headers(SELLER_A_ID, "seller")
SELLER_B = auth_headers(SELLER_B_ID, "seller")
FREE_SELLER = auth_headers(FREE_SELLER_ID, "seller")
ADMIN = auth_headers(ADMIN_ID, "admin")


async def create_request_via_api(
    client: AsyncClient,
    **overrides: Any,
) -> dict[str, Any]:
    """POST a part request as the seeded buyer and return the response body."""
    body = {**DEFAULT_REQUEST, **overrides}
    resp = await client.post("/api/v1/part-requests", json=body, headers=BUYER)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def run_delivery(
    session_factory: async_sessionmaker,
    *,
    now: Optional[datetime] = None,
    batch_limit: Optional[int] = None,
):
    """Run one delivery worker tick in its own committed session."""
    from quote_engine.jobs.deliveryWorker import run_delivery_tick

    async with session_factory() as session:
        result = await run_delivery_tick(session, now=now, batch_limit=batch_limit)
        await session.commit()
    return result


async def deliver_all(session_factory: async_sessionmaker):
    """Release every queue entry, whatever the seller's tier delay."""
    return await run_delivery(session_factory, now=utcnow() + timedelta(days=3))


async def submit_quote_via_api(
    client: AsyncClient,
    request_id: str,
    seller_headers: dict[str, str],
    price: str = "20000.00",
    condition: str = "used",
) -> Any:
    return await client.post(
        f"/api/v1/seller/requests/{request_id}/quotes",
        json={
            "price": price,
            "delivery_estimate": "2-3 business days",
            "condition": condition,
        },
        headers=seller_headers,
    )


async def fetch_all(session_factory: async_sessionmaker, stmt) -> list:
    """Run a SELECT in a short-lived session and return the scalars."""
    async with session_factory() as session:
        result = await session.execute(stmt)
        return list(result.scalars().all())


async def create_aged_request(
    session_factory: async_sessionmaker,
    age: timedelta,
    *,
    quoted: bool = True,
):
    """A request created *age* ago, delivered to seller A and (optionally)
    quoted by them shortly afterwards."""
    from quote_engine.models.part_request import PartCondition
    from quote_engine.services import quoteService
    from quote_engine.services.partRequestService import (
        PartRequestDraft,
        submit_part_request,
    )

    created = utcnow() - age
    async with session_factory() as session:
        request, _ = await submit_part_request(
            session,
            BUYER_ID,
            PartRequestDraft(
                vehicle_make="Nissan",
                vehicle_model="Tiida",
                vehicle_year=2010,
                part_name="Side Mirror",
            ),
            now=created,
        )
        await session.commit()

    await run_delivery(session_factory, now=created + timedelta(minutes=1))

    if quoted:
        async with session_factory() as session:
            await quoteService.submit_quote(
                session,
                request.id,
                SELLER_A_ID,
                price=Decimal("4500.00"),
                delivery_estimate="Same day",
                condition=PartCondition.USED,
                now=created + timedelta(minutes=5),
            )
            await session.commit()
    return request
