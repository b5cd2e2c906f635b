"""Transaction REST API routes.

These endpoints provide the HTTP interface for the trade lifecycle. The
calling agent is identified by the X-Agent-ID header; settlement endpoints
are reserved for operators (X-Operator-Key).

Routes:
    POST   /api/v1/transactions                — Open a transaction (operator)
    GET    /api/v1/transactions                — List transactions
    GET    /api/v1/transactions/{id}           — Get transaction details
    GET    /api/v1/transactions/{id}/status    — Lightweight status check
    GET    /api/v1/transactions/{id}/escrow    — Get escrow account
    GET    /api/v1/transactions/{id}/ratings   — Get ratings
    POST   /api/v1/transactions/{id}/fund      — Buyer opens the held payment
    POST   /api/v1/transactions/{id}/deliver   — Seller marks delivered
    POST   /api/v1/transactions/{id}/confirm   — Buyer confirms delivery
    POST   /api/v1/transactions/{id}/rate      — Party rates the counterparty
    POST   /api/v1/transactions/{id}/dispute   — Party opens a dispute
    POST   /api/v1/transactions/{id}/cancel    — Party cancels a pending trade
    POST   /api/v1/transactions/{id}/complete  — Settle (operator)
    POST   /api/v1/transactions/{id}/refund    — Refund a dispute (operator)
    POST   /api/v1/transactions/{id}/release   — Resolve a dispute for the seller (operator)
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by FastAPI

from fastapi import APIRouter, Depends, Query

from agentic_marketplace.api.deps import get_agent_id, get_transaction_service, require_operator
from agentic_marketplace.domain.enums import PartyRole, TransactionStatus
from agentic_marketplace.domain.origin import TransactionOrigin
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.schemas.transaction import (
    CancelRequest,
    CreateTransactionRequest,
    DeliverRequest,
    DisputeRequest,
    EscrowResponse,
    FundingResponse,
    RatingRequest,
    RatingResponse,
    RefundRequest,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatusResponse,
)
from agentic_marketplace.services.transaction_service import TransactionService

router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create / Read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=201,
    summary="Open a transaction",
    dependencies=[Depends(require_operator)],
)
async def create_transaction(
    request: CreateTransactionRequest,
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    """Called by the listing, offer, auction and task flows once a trade is agreed."""
    transaction = await svc.create_transaction(
        buyer_id=request.buyer_id,
        seller_id=request.seller_id,
        amount=request.amount,
        currency=request.currency,
        origin=TransactionOrigin(
            listing_id=request.listing_id,
            request_id=request.request_id,
            offer_id=request.offer_id,
            auction_id=request.auction_id,
            task_id=request.task_id,
        ),
        metadata=request.metadata,
    )
    return TransactionResponse.model_validate(transaction)


@router.get(
    "",
    response_model=TransactionListResponse,
    summary="List transactions",
)
async def list_transactions(
    agent_id: uuid.UUID | None = Query(default=None, description="Only this agent's trades"),
    role: PartyRole | None = Query(default=None, description="Side the agent is on"),
    status: TransactionStatus | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionListResponse:
    page = await svc.list_transactions(
        agent_id=agent_id, role=role, status=status, limit=limit, offset=offset
    )
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get(
    "/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get transaction details",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.get_transaction(transaction_id)
    return TransactionResponse.model_validate(transaction)


@router.get(
    "/{transaction_id}/status",
    response_model=TransactionStatusResponse,
    summary="Get transaction status",
)
async def get_transaction_status(
    transaction_id: uuid.UUID,
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionStatusResponse:
    """Lightweight status check with the lifecycle events that can fire next."""
    return TransactionStatusResponse(**await svc.get_status(transaction_id))


@router.get(
    "/{transaction_id}/escrow",
    response_model=EscrowResponse,
    summary="Get escrow account",
)
async def get_escrow(
    transaction_id: uuid.UUID,
    svc: TransactionService = Depends(get_transaction_service),
) -> EscrowResponse:
    escrow = await svc.get_escrow(transaction_id)
    return EscrowResponse.model_validate(escrow)


@router.get(
    "/{transaction_id}/ratings",
    response_model=list[RatingResponse],
    summary="Get ratings",
)
async def get_ratings(
    transaction_id: uuid.UUID,
    svc: TransactionService = Depends(get_transaction_service),
) -> list[RatingResponse]:
    ratings = await svc.get_transaction_ratings(transaction_id)
    return [RatingResponse.model_validate(r) for r in ratings]


# ---------------------------------------------------------------------------
# Party actions
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/fund",
    response_model=FundingResponse,
    summary="Fund escrow",
)
async def fund_escrow(
    transaction_id: uuid.UUID,
    agent_id: uuid.UUID = Depends(get_agent_id),
    svc: TransactionService = Depends(get_transaction_service),
) -> FundingResponse:
    """Open the held payment. The buyer authorizes it with the client secret."""
    result = await svc.fund_escrow(transaction_id, buyer_id=agent_id)
    return FundingResponse.model_validate(result)


@router.post(
    "/{transaction_id}/deliver",
    response_model=TransactionResponse,
    summary="Mark delivered",
)
async def mark_delivered(
    transaction_id: uuid.UUID,
    request: DeliverRequest,
    agent_id: uuid.UUID = Depends(get_agent_id),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.mark_delivered(
        transaction_id,
        seller_id=agent_id,
        proof=request.proof,
        message=request.message,
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/confirm",
    response_model=TransactionResponse,
    summary="Confirm delivery",
)
async def confirm_delivery(
    transaction_id: uuid.UUID,
    agent_id: uuid.UUID = Depends(get_agent_id),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.confirm_delivery(transaction_id, buyer_id=agent_id)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/rate",
    response_model=RatingResponse,
    status_code=201,
    summary="Rate the counterparty",
)
async def submit_rating(
    transaction_id: uuid.UUID,
    request: RatingRequest,
    agent_id: uuid.UUID = Depends(get_agent_id),
    svc: TransactionService = Depends(get_transaction_service),
) -> RatingResponse:
    """Rate the other party. Two ratings on a delivered trade complete it."""
    rating = await svc.submit_rating(
        transaction_id,
        rater_id=agent_id,
        score=request.score,
        comment=request.comment,
    )
    return RatingResponse.model_validate(rating)


@router.post(
    "/{transaction_id}/dispute",
    response_model=TransactionResponse,
    summary="Open a dispute",
)
async def dispute_transaction(
    transaction_id: uuid.UUID,
    request: DisputeRequest,
    agent_id: uuid.UUID = Depends(get_agent_id),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.dispute_transaction(
        transaction_id,
        party_id=agent_id,
        reason=request.reason,
        description=request.description,
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/cancel",
    response_model=TransactionResponse,
    summary="Cancel a pending transaction",
)
async def cancel_transaction(
    transaction_id: uuid.UUID,
    request: CancelRequest,
    agent_id: uuid.UUID = Depends(get_agent_id),
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.cancel_transaction(
        transaction_id, party_id=agent_id, reason=request.reason
    )
    return TransactionResponse.model_validate(transaction)


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


@router.post(
    "/{transaction_id}/complete",
    response_model=TransactionResponse,
    summary="Complete a delivered transaction",
    dependencies=[Depends(require_operator)],
)
async def complete_transaction(
    transaction_id: uuid.UUID,
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    """Capture the held payment and settle. Transitions delivered -> completed."""
    transaction = await svc.complete_transaction(transaction_id)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/refund",
    response_model=TransactionResponse,
    summary="Refund a disputed transaction",
    dependencies=[Depends(require_operator)],
)
async def refund_transaction(
    transaction_id: uuid.UUID,
    request: RefundRequest,
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.refund_transaction(
        transaction_id, issue_provider_refund=request.issue_provider_refund
    )
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/{transaction_id}/release",
    response_model=TransactionResponse,
    summary="Resolve a dispute in the seller's favour",
    dependencies=[Depends(require_operator)],
)
async def release_disputed(
    transaction_id: uuid.UUID,
    svc: TransactionService = Depends(get_transaction_service),
) -> TransactionResponse:
    transaction = await svc.release_disputed(transaction_id)
    return TransactionResponse.model_validate(transaction)
