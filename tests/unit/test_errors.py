"""
Unit tests for engine error -> HTTP response mapping.
"""

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError

from quote_engine.api.errors import install_error_handlers, status_for
from quote_engine.core.exceptions import (
    ConflictError,
    EngineError,
    NotFoundError,
    PreconditionFailedError,
    TransientStoreError,
    UnauthorizedError,
    is_transient_db_error,
    translate_store_errors,
)

pytestmark = pytest.mark.asyncio


class TestStatusFor:

    @pytest.mark.parametrize(
        "error,code",
        [
            (NotFoundError("x"), 404),
            (UnauthorizedError("x"), 403),
            (PreconditionFailedError("x"), 422),
            (ConflictError("x"), 409),
            (TransientStoreError("x"), 503),
            (EngineError("x"), 500),
        ],
    )
    async def test_mapping(self, error, code):
        assert status_for(error) == code

    async def test_subclass_inherits_mapping(self):
        class QuoteGone(NotFoundError):
            pass

        assert status_for(QuoteGone("gone")) == 404


class TestHandlers:

    @pytest_asyncio.fixture
    async def client(self):
        app = FastAPI()
        install_error_handlers(app)

        @app.get("/conflict")
        async def conflict():
            raise ConflictError("Part request already fulfilled", request_id="r1")

        @app.get("/unavailable")
        async def unavailable():
            raise TransientStoreError("Store unavailable during accept_quote")

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    async def test_conflict_body(self, client):
        resp = await client.get("/conflict")
        assert resp.status_code == 409
        assert resp.json() == {
            "detail": "Part request already fulfilled",
            "error": "conflict",
        }
        assert "retry-after" not in resp.headers

    async def test_transient_sets_retry_after(self, client):
        resp = await client.get("/unavailable")
        assert resp.status_code == 503
        assert resp.headers["retry-after"] == "1"
        assert resp.json()["error"] == "store_unavailable"


class TestTranslateStoreErrors:

    async def test_operational_error_becomes_transient(self):
        @translate_store_errors
        async def op():
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))

        with pytest.raises(TransientStoreError) as exc_info:
            await op()
        assert exc_info.value.retryable is True

    async def test_integrity_error_passes_through(self):
        @translate_store_errors
        async def op():
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))

        with pytest.raises(IntegrityError):
            await op()

    async def test_classifier(self):
        assert is_transient_db_error(OperationalError("x", {}, Exception()))
        assert not is_transient_db_error(IntegrityError("x", {}, Exception()))
        assert not is_transient_db_error(ValueError("x"))
