"""
Unit tests for part request intake validation and expiry helpers.
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from quote_engine.core.config import settings
from quote_engine.core.exceptions import UnauthorizedError
from quote_engine.models.part_request import PartRequest, RequestStatus, Urgency
from quote_engine.services import partRequestService
from quote_engine.services.partRequestService import (
    PartRequestDraft,
    create_part_request,
    is_past_expiry,
)
from tests.conftest import NOW

pytestmark = pytest.mark.asyncio


def _draft(**overrides) -> PartRequestDraft:
    fields = dict(
        vehicle_make="Toyota",
        vehicle_model="Corolla",
        vehicle_year=2015,
        part_name="Alternator",
    )
    fields.update(overrides)
    return PartRequestDraft(**fields)


class TestCreate:

    async def test_open_with_ttl(self, mock_db):
        owner = uuid.uuid4()
        request = await create_part_request(
            mock_db, owner, _draft(urgency=Urgency.HIGH, part_name="  Alternator "), now=NOW
        )
        mock_db.add.assert_called_once_with(request)
        mock_db.flush.assert_awaited_once()
        assert isinstance(request, PartRequest)
        assert request.owner_id == owner
        assert request.status == RequestStatus.OPEN
        assert request.part_name == "Alternator"
        assert request.expires_at == NOW + timedelta(days=settings.request_ttl_days)

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"part_name": "   "}, "Part name"),
            ({"vehicle_year": 1899}, "Vehicle year"),
            ({"vehicle_year": NOW.year + 2}, "Vehicle year"),
            ({"budget": Decimal("-1")}, "Budget"),
        ],
    )
    async def test_validation(self, mock_db, overrides, message):
        with pytest.raises(ValueError, match=message):
            await create_part_request(mock_db, uuid.uuid4(), _draft(**overrides), now=NOW)
        mock_db.add.assert_not_called()

    async def test_next_model_year_allowed(self, mock_db):
        request = await create_part_request(
            mock_db, uuid.uuid4(), _draft(vehicle_year=NOW.year + 1), now=NOW
        )
        assert request.vehicle_year == NOW.year + 1


class TestExpiry:

    async def test_is_past_expiry(self, sample_request):
        assert not is_past_expiry(sample_request, NOW)
        assert is_past_expiry(sample_request, sample_request.expires_at)

    async def test_expire_lost_race_returns_false(self, mock_db, sample_request):
        mock_db.execute.return_value.rowcount = 0
        assert await partRequestService.expire_request(
            mock_db, sample_request, now=NOW
        ) is False
        mock_db.add.assert_not_called()


class TestOwnership:

    async def test_other_buyer_refused(self, mock_db, sample_request):
        mock_db.get.return_value = sample_request
        with pytest.raises(UnauthorizedError):
            await partRequestService.get_owned_part_request(
                mock_db, sample_request.id, uuid.uuid4(), now=NOW
            )
