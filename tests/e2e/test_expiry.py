"""
E2E: Request expiry.

Requests expire through the periodic sweep or lazily when read after
``expires_at``. Expiry rejects pending quotes and notifies the buyer; buyers
get a single warning shortly before the deadline.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from quote_engine.jobs.expirySweeper import run_expiry_sweep
from quote_engine.models.notification import Notification, NotificationType
from quote_engine.models.part_request import PartRequest, RequestStatus
from quote_engine.models.quote import Quote, QuoteStatus
from tests.e2e.conftest import (
    BUYER,
    BUYER_ID,
    SELLER_A,
    create_aged_request,
    fetch_all,
    submit_quote_via_api,
)

pytestmark = pytest.mark.asyncio


async def _sweep(session_factory, **kwargs):
    async with session_factory() as session:
        result = await run_expiry_sweep(session, **kwargs)
        await session.commit()
    return result


class TestSweep:

    async def test_overdue_request_expired(self, session_factory):
        request = await create_aged_request(session_factory, timedelta(days=31))

        result = await _sweep(session_factory)

        assert result.expired == 1
        [stored] = await fetch_all(
            session_factory, select(PartRequest).where(PartRequest.id == request.id)
        )
        assert stored.status == RequestStatus.EXPIRED
        quotes = await fetch_all(session_factory, select(Quote))
        assert [q.status for q in quotes] == [QuoteStatus.REJECTED]

        expired_notices = await fetch_all(
            session_factory,
            select(Notification).where(
                Notification.notification_type == NotificationType.REQUEST_EXPIRED
            ),
        )
        assert [n.recipient_id for n in expired_notices] == [BUYER_ID]

    async def test_sweep_is_idempotent(self, session_factory):
        await create_aged_request(session_factory, timedelta(days=31), quoted=False)
        first = await _sweep(session_factory)
        second = await _sweep(session_factory)
        assert (first.expired, second.expired) == (1, 0)

    async def test_live_request_untouched(self, session_factory):
        await create_aged_request(session_factory, timedelta(days=2))
        result = await _sweep(session_factory)
        assert result.expired == 0
        assert result.warned == 0

    async def test_expired_request_rejects_quotes(self, client: AsyncClient, session_factory):
        request = await create_aged_request(session_factory, timedelta(days=31), quoted=False)
        await _sweep(session_factory)

        resp = await submit_quote_via_api(client, str(request.id), SELLER_A)

        assert resp.status_code == 422
        assert "no longer accepts quotes" in resp.json()["detail"]


class TestLazyExpiry:

    async def test_read_expires_request(self, client: AsyncClient, session_factory):
        request = await create_aged_request(session_factory, timedelta(days=31))

        resp = await client.get(f"/api/v1/part-requests/{request.id}", headers=BUYER)

        assert resp.status_code == 200
        assert resp.json()["status"] == "expired"
        quotes = await fetch_all(session_factory, select(Quote))
        assert [q.status for q in quotes] == [QuoteStatus.REJECTED]

        # Nothing left for the sweep to do
        result = await _sweep(session_factory)
        assert result.expired == 0

    async def test_accept_after_deadline_refused(self, client: AsyncClient, session_factory):
        request = await create_aged_request(session_factory, timedelta(days=31))
        [quote] = await fetch_all(session_factory, select(Quote))

        resp = await client.post(
            f"/api/v1/part-requests/{request.id}/quotes/{quote.id}/accept",
            headers=BUYER,
        )

        assert resp.status_code == 422
        assert resp.json()["error"] == "precondition_failed"


class TestExpiryWarning:

    async def test_single_warning_before_deadline(self, session_factory):
        await create_aged_request(session_factory, timedelta(days=29, hours=12), quoted=False)

        first = await _sweep(session_factory)
        second = await _sweep(session_factory)

        assert first.warned == 1
        assert second.warned == 0
        warnings = await fetch_all(
            session_factory,
            select(Notification).where(
                Notification.notification_type == NotificationType.REQUEST_EXPIRING
            ),
        )
        assert len(warnings) == 1
        assert warnings[0].recipient_id == BUYER_ID
        assert warnings[0].data_json["hours_remaining"] == 12
