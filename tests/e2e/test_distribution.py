"""
E2E: Request intake and distribution.

Tests candidate selection, tier-delayed scheduling, idempotent fan-out and
all-or-nothing behaviour when a candidate seller is unknown.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from quote_engine.core.clock import as_utc, utcnow
from quote_engine.core.exceptions import NotFoundError
from quote_engine.models.part_request import PartRequest
from quote_engine.models.queue_entry import QueueEntry, QueueEntryStatus
from quote_engine.services import distributor
from quote_engine.services.partRequestService import (
    PartRequestDraft,
    create_part_request,
)
from tests.e2e.conftest import (
    BUYER,
    BUYER_ID,
    FREE_SELLER_ID,
    OTHER_BUYER,
    SELLER_A,
    SELLER_A_ID,
    SELLER_B_ID,
    SUSPENDED_SELLER_ID,
    create_request_via_api,
    fetch_all,
)

pytestmark = pytest.mark.asyncio


def _parse(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def _draft() -> PartRequestDraft:
    return PartRequestDraft(
        vehicle_make="Honda",
        vehicle_model="Civic",
        vehicle_year=2012,
        part_name="Radiator",
    )


async def _entry_count(session, request_id) -> int:
    result = await session.execute(
        select(func.count(QueueEntry.id)).where(QueueEntry.request_id == request_id)
    )
    return result.scalar_one()


class TestCreateViaApi:

    async def test_create_returns_201_with_fan_out(self, client: AsyncClient):
        body = await create_request_via_api(client)
        assert body["request"]["status"] == "open"
        assert body["request"]["owner_id"] == str(BUYER_ID)
        assert body["distributed_to"] == 2
        sellers = [e["seller_id"] for e in body["queue_entries"]]
        # Parish match first, then plan rank
        assert sellers == [str(SELLER_A_ID), str(SELLER_B_ID)]
        assert all(e["status"] == "pending" for e in body["queue_entries"])

    async def test_free_and_suspended_sellers_excluded(self, client: AsyncClient):
        body = await create_request_via_api(client)
        sellers = {e["seller_id"] for e in body["queue_entries"]}
        assert str(FREE_SELLER_ID) not in sellers
        assert str(SUSPENDED_SELLER_ID) not in sellers

    async def test_schedule_follows_tier_delay(self, client: AsyncClient):
        before = utcnow()
        body = await create_request_via_api(client)
        after = utcnow()
        by_seller = {e["seller_id"]: e for e in body["queue_entries"]}

        enterprise = _parse(by_seller[str(SELLER_A_ID)]["scheduled_delivery"])
        basic = _parse(by_seller[str(SELLER_B_ID)]["scheduled_delivery"])
        assert before <= enterprise <= after
        assert basic - enterprise == timedelta(hours=24)

    async def test_expires_after_ttl(self, client: AsyncClient):
        body = await create_request_via_api(client)
        created = _parse(body["request"]["created_at"])
        expires = _parse(body["request"]["expires_at"])
        assert abs((expires - created) - timedelta(days=30)) < timedelta(seconds=5)

    async def test_invalid_year_rejected(self, client: AsyncClient):
        resp = await client.post(
            "/api/v1/part-requests",
            json={
                "vehicle_make": "Toyota",
                "vehicle_model": "Corolla",
                "vehicle_year": utcnow().year + 5,
                "part_name": "Alternator",
            },
            headers=BUYER,
        )
        assert resp.status_code == 422

    async def test_missing_part_name_rejected(self, client: AsyncClient):
        resp = await client.post(
            "/api/v1/part-requests",
            json={"vehicle_make": "Toyota", "vehicle_model": "Corolla", "vehicle_year": 2015},
            headers=BUYER,
        )
        assert resp.status_code == 422

    async def test_requires_token(self, client: AsyncClient):
        resp = await client.post("/api/v1/part-requests", json={})
        assert resp.status_code == 401

    async def test_seller_cannot_create(self, client: AsyncClient):
        resp = await client.post(
            "/api/v1/part-requests",
            json={
                "vehicle_make": "Toyota",
                "vehicle_model": "Corolla",
                "vehicle_year": 2015,
                "part_name": "Alternator",
            },
            headers=SELLER_A,
        )
        assert resp.status_code == 403


class TestDistributeService:

    async def test_one_entry_per_candidate(self, session_factory):
        async with session_factory() as session:
            request = await create_part_request(session, BUYER_ID, _draft())
            entries = await distributor.distribute(
                session, request, [SELLER_A_ID, SELLER_B_ID, SELLER_A_ID]
            )
            await session.commit()

        assert [e.seller_id for e in entries] == [SELLER_A_ID, SELLER_B_ID]
        assert {e.status for e in entries} == {QueueEntryStatus.PENDING}

    async def test_rerun_is_idempotent(self, session_factory):
        async with session_factory() as session:
            request = await create_part_request(session, BUYER_ID, _draft())
            first = await distributor.distribute(session, request, [SELLER_A_ID, SELLER_B_ID])
            await session.commit()

        async with session_factory() as session:
            request = await session.get(PartRequest, request.id)
            second = await distributor.distribute(session, request, [SELLER_A_ID, SELLER_B_ID])
            count = await _entry_count(session, request.id)
            await session.commit()

        assert [e.id for e in second] == [e.id for e in first]
        assert count == 2

    async def test_unknown_seller_writes_nothing(self, session_factory):
        async with session_factory() as session:
            request = await create_part_request(session, BUYER_ID, _draft())
            await session.commit()

        async with session_factory() as session:
            request = await session.get(PartRequest, request.id)
            with pytest.raises(NotFoundError):
                await distributor.distribute(session, request, [SELLER_A_ID, uuid.uuid4()])
            await session.rollback()

        entries = await fetch_all(
            session_factory,
            select(QueueEntry).where(QueueEntry.request_id == request.id),
        )
        assert entries == []

    async def test_custom_tier_lookup(self, session_factory):
        class FlatDelay:
            async def delays_for(self, db, seller_ids):
                return {sid: timedelta(minutes=10) for sid in seller_ids}

        now = utcnow()
        async with session_factory() as session:
            request = await create_part_request(session, BUYER_ID, _draft(), now=now)
            entries = await distributor.distribute(
                session,
                request,
                [SELLER_A_ID, SELLER_B_ID],
                tier_lookup=FlatDelay(),
                now=now,
            )
            await session.commit()

        assert {as_utc(e.scheduled_delivery) for e in entries} == {now + timedelta(minutes=10)}


class TestBuyerListing:

    async def test_lists_own_requests_newest_first(self, client: AsyncClient):
        first = await create_request_via_api(client, part_name="Alternator")
        second = await create_request_via_api(client, part_name="Radiator")

        resp = await client.get("/api/v1/part-requests", headers=BUYER)

        assert resp.status_code == 200
        ids = [r["id"] for r in resp.json()]
        assert ids == [second["request"]["id"], first["request"]["id"]]

    async def test_status_filter(self, client: AsyncClient):
        await create_request_via_api(client)
        resp = await client.get(
            "/api/v1/part-requests", params={"status": "fulfilled"}, headers=BUYER
        )
        assert resp.json() == []

    async def test_other_buyer_sees_nothing(self, client: AsyncClient):
        body = await create_request_via_api(client)
        assert (await client.get("/api/v1/part-requests", headers=OTHER_BUYER)).json() == []
        resp = await client.get(
            f"/api/v1/part-requests/{body['request']['id']}", headers=OTHER_BUYER
        )
        assert resp.status_code == 403
