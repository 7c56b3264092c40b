"""
E2E: Notification feed and read state.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import pytest
from httpx import AsyncClient

from quote_engine.core.clock import as_utc
from tests.e2e.conftest import (
    BUYER,
    OTHER_BUYER,
    SELLER_A,
    create_request_via_api,
    run_delivery,
    submit_quote_via_api,
)

pytestmark = pytest.mark.asyncio


def _parse(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


async def _buyer_with_quotes(client: AsyncClient, session_factory, count: int = 2) -> str:
    body = await create_request_via_api(client)
    request_id = body["request"]["id"]
    await run_delivery(session_factory)
    # Each revision is a fresh notification for the buyer
    for i in range(count):
        await submit_quote_via_api(client, request_id, SELLER_A, price=str(1000 - i))
    return request_id


class TestFeed:

    async def test_feed_newest_first_with_meta(self, client: AsyncClient, session_factory):
        request_id = await _buyer_with_quotes(client, session_factory)

        resp = await client.get("/api/v1/notifications", headers=BUYER)

        assert resp.status_code == 200
        feed = resp.json()
        assert feed["meta"] == {
            "page": 1,
            "page_size": 20,
            "total_items": 2,
            "total_pages": 1,
        }
        titles = [n["title"] for n in feed["items"]]
        assert sorted(titles) == ["New Quote Received", "Quote Updated"]
        assert all(n["request_id"] == request_id for n in feed["items"])
        assert all(n["read"] is False for n in feed["items"])

    async def test_pagination(self, client: AsyncClient, session_factory):
        await _buyer_with_quotes(client, session_factory, count=3)

        resp = await client.get(
            "/api/v1/notifications", params={"page": 2, "page_size": 2}, headers=BUYER
        )

        feed = resp.json()
        assert len(feed["items"]) == 1
        assert feed["meta"]["total_pages"] == 2

    async def test_feed_is_per_recipient(self, client: AsyncClient, session_factory):
        await _buyer_with_quotes(client, session_factory)
        feed = (await client.get("/api/v1/notifications", headers=OTHER_BUYER)).json()
        assert feed["items"] == []
        assert feed["meta"]["total_pages"] == 0

    async def test_requires_token(self, client: AsyncClient):
        resp = await client.get("/api/v1/notifications")
        assert resp.status_code == 401


class TestReadState:

    async def test_unread_count_and_mark_read(self, client: AsyncClient, session_factory):
        await _buyer_with_quotes(client, session_factory)
        count = (await client.get("/api/v1/notifications/unread-count", headers=BUYER)).json()
        assert count == {"unread_count": 2}

        feed = (await client.get("/api/v1/notifications", headers=BUYER)).json()
        target = feed["items"][0]["id"]
        resp = await client.patch(f"/api/v1/notifications/{target}/read", headers=BUYER)

        assert resp.status_code == 200
        assert resp.json()["read"] is True
        assert resp.json()["read_at"] is not None
        count = (await client.get("/api/v1/notifications/unread-count", headers=BUYER)).json()
        assert count == {"unread_count": 1}

        unread = (
            await client.get(
                "/api/v1/notifications", params={"unread_only": True}, headers=BUYER
            )
        ).json()
        assert [n["id"] for n in unread["items"]] != [target]
        assert len(unread["items"]) == 1

    async def test_mark_read_is_idempotent(self, client: AsyncClient, session_factory):
        await _buyer_with_quotes(client, session_factory, count=1)
        feed = (await client.get("/api/v1/notifications", headers=BUYER)).json()
        target = feed["items"][0]["id"]

        first = (await client.patch(f"/api/v1/notifications/{target}/read", headers=BUYER)).json()
        second = (await client.patch(f"/api/v1/notifications/{target}/read", headers=BUYER)).json()

        assert second["read"] is True
        assert _parse(first["read_at"]) == _parse(second["read_at"])

    async def test_other_user_cannot_mark_read(self, client: AsyncClient, session_factory):
        await _buyer_with_quotes(client, session_factory, count=1)
        feed = (await client.get("/api/v1/notifications", headers=BUYER)).json()
        target = feed["items"][0]["id"]

        resp = await client.patch(f"/api/v1/notifications/{target}/read", headers=OTHER_BUYER)

        assert resp.status_code == 403
        assert resp.json()["error"] == "unauthorized"

    async def test_unknown_notification(self, client: AsyncClient):
        resp = await client.patch(
            f"/api/v1/notifications/{uuid.uuid4()}/read", headers=BUYER
        )
        assert resp.status_code == 404

    async def test_read_all(self, client: AsyncClient, session_factory):
        await _buyer_with_quotes(client, session_factory, count=3)

        resp = await client.patch("/api/v1/notifications/read-all", headers=BUYER)
        assert resp.json() == {"updated": 3}

        again = await client.patch("/api/v1/notifications/read-all", headers=BUYER)
        assert again.json() == {"updated": 0}
        count = (await client.get("/api/v1/notifications/unread-count", headers=BUYER)).json()
        assert count == {"unread_count": 0}
