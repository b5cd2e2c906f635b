"""Origin reference of a transaction.

A transaction remembers the upstream entity that produced it. A request for
proposal contributes both the request id and the accepted offer id; every
other flow contributes a single id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from agentic_marketplace.domain.enums import OriginKind
from agentic_marketplace.domain.exceptions import InvalidTransactionRequestError

if TYPE_CHECKING:
    import uuid


@dataclass(frozen=True)
class TransactionOrigin:
    listing_id: uuid.UUID | None = None
    request_id: uuid.UUID | None = None
    offer_id: uuid.UUID | None = None
    auction_id: uuid.UUID | None = None
    task_id: uuid.UUID | None = None

    @property
    def kinds(self) -> list[OriginKind]:
        kinds = []
        if self.listing_id is not None:
            kinds.append(OriginKind.LISTING)
        if self.request_id is not None or self.offer_id is not None:
            kinds.append(OriginKind.OFFER)
        if self.auction_id is not None:
            kinds.append(OriginKind.AUCTION)
        if self.task_id is not None:
            kinds.append(OriginKind.TASK)
        return kinds

    @property
    def kind(self) -> OriginKind | None:
        kinds = self.kinds
        return kinds[0] if kinds else None

    def validate(self) -> None:
        """Raise if references from more than one upstream flow are set."""
        kinds = self.kinds
        if len(kinds) > 1:
            joined = ", ".join(k.value for k in kinds)
            raise InvalidTransactionRequestError(
                f"A transaction has at most one origin, got: {joined}"
            )

    def as_columns(self) -> dict[str, uuid.UUID | None]:
        return {
            "listing_id": self.listing_id,
            "request_id": self.request_id,
            "offer_id": self.offer_id,
            "auction_id": self.auction_id,
            "task_id": self.task_id,
        }
