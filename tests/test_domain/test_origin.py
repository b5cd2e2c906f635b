"""Tests for TransactionOrigin."""

from __future__ import annotations

import uuid

import pytest

from agentic_marketplace.domain.enums import OriginKind
from agentic_marketplace.domain.exceptions import InvalidTransactionRequestError
from agentic_marketplace.domain.origin import TransactionOrigin


class TestOriginKind:
    def test_no_origin(self) -> None:
        origin = TransactionOrigin()
        assert origin.kind is None
        origin.validate()

    def test_request_and_offer_are_one_origin(self) -> None:
        origin = TransactionOrigin(request_id=uuid.uuid4(), offer_id=uuid.uuid4())
        assert origin.kinds == [OriginKind.OFFER]
        origin.validate()

    def test_single_task(self) -> None:
        assert TransactionOrigin(task_id=uuid.uuid4()).kind == OriginKind.TASK


class TestOriginValidation:
    def test_listing_and_auction_rejected(self) -> None:
        origin = TransactionOrigin(listing_id=uuid.uuid4(), auction_id=uuid.uuid4())
        with pytest.raises(InvalidTransactionRequestError, match="at most one origin"):
            origin.validate()

    def test_as_columns(self) -> None:
        listing_id = uuid.uuid4()
        columns = TransactionOrigin(listing_id=listing_id).as_columns()
        assert columns["listing_id"] == listing_id
        assert columns["task_id"] is None
        assert set(columns) == {"listing_id", "request_id", "offer_id", "auction_id", "task_id"}
