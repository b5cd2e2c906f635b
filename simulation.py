#!/usr/bin/env python3
"""Agentic Marketplace — End-to-End Simulation.

Simulates three scenarios with BuyerBot and SellerBot agents:

    Scenario 1: Happy Path
        - Operator opens a transaction from a listing
        - Buyer funds escrow, the provider confirms the hold
        - Seller delivers, buyer confirms, operator completes -> payment captured

    Scenario 2: Dispute and Refund
        - Buyer funds escrow
        - Seller never delivers, buyer opens a dispute
        - Operator refunds -> hold released back to the buyer

    Scenario 3: Rating Auto-Completion
        - Seller delivers on an accepted offer
        - Both parties rate each other -> transaction completes on its own

Payments run against the simulated Stripe gateway (no secret key), and events
go to the log instead of Redis.

Usage:
    # Option A: With Docker (PostgreSQL):
    docker compose up -d
    uv run python simulation.py

    # Option B: Without Docker (SQLite in-memory):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from agentic_marketplace.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from agentic_marketplace.domain.origin import TransactionOrigin  # noqa: E402
from agentic_marketplace.infrastructure.database.repositories import (  # noqa: E402
    AgentReputationRepository,
)
from agentic_marketplace.infrastructure.event_publishers import LoggingEventPublisher  # noqa: E402
from agentic_marketplace.services.dispatcher import OutboundDispatcher  # noqa: E402
from agentic_marketplace.services.payment_service import StripePaymentGateway  # noqa: E402
from agentic_marketplace.services.transaction_service import TransactionService  # noqa: E402

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None
_gateway = StripePaymentGateway()
_dispatcher = OutboundDispatcher(LoggingEventPublisher(), max_queue_size=100, workers=1)


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
        from sqlalchemy.pool import StaticPool

        from agentic_marketplace.infrastructure.database.engine import create_sqlite_engine
        from agentic_marketplace.infrastructure.database.orm_models import Base

        _sqlite_engine = create_sqlite_engine(
            "sqlite+aiosqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from agentic_marketplace.infrastructure.database.engine import init_db

        await init_db()

    await _dispatcher.start()


def get_session() -> Any:
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from agentic_marketplace.infrastructure.database.engine import get_session_factory

    return get_session_factory()()


async def shutdown_database() -> None:
    """Drain events and close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    await _dispatcher.stop()
    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from agentic_marketplace.infrastructure.database.engine import close_db

        await close_db()


def service_for(session: Any) -> TransactionService:
    return TransactionService(session, payment=_gateway, dispatcher=_dispatcher)


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class BuyerBot:
    """Simulated buyer agent that funds, confirms, rates and disputes."""

    agent_id: uuid.UUID = field(default_factory=uuid.uuid4)

    async def fund(self, svc: TransactionService, transaction_id: uuid.UUID) -> str:
        """Open the held payment and have the provider confirm it."""
        funding = await svc.fund_escrow(transaction_id, self.agent_id)
        logger.info(
            "🔵 BUYER: Hold authorized",
            transaction_id=str(transaction_id),
            payment_ref=funding.payment_ref,
        )
        # Stands in for the payment_intent.amount_capturable_updated webhook
        await svc.confirm_escrow_funded(transaction_id, funding.payment_ref)
        return funding.payment_ref

    async def confirm(self, svc: TransactionService, transaction_id: uuid.UUID) -> None:
        await svc.confirm_delivery(transaction_id, self.agent_id)
        logger.info("🔵 BUYER: Delivery confirmed", transaction_id=str(transaction_id))

    async def rate(self, svc: TransactionService, transaction_id: uuid.UUID, score: int) -> None:
        await svc.submit_rating(transaction_id, self.agent_id, score, comment="as described")
        logger.info("🔵 BUYER: Seller rated", transaction_id=str(transaction_id), score=score)

    async def dispute(self, svc: TransactionService, transaction_id: uuid.UUID, reason: str) -> None:
        await svc.dispute_transaction(transaction_id, self.agent_id, reason)
        logger.info("🔵 BUYER: Dispute opened", transaction_id=str(transaction_id))


@dataclass
class SellerBot:
    """Simulated seller agent that delivers and rates."""

    agent_id: uuid.UUID = field(default_factory=uuid.uuid4)

    async def deliver(self, svc: TransactionService, transaction_id: uuid.UUID, proof: str) -> None:
        await svc.mark_delivered(transaction_id, self.agent_id, proof=proof)
        logger.info("🟢 SELLER: Delivered", transaction_id=str(transaction_id), proof=proof)

    async def rate(self, svc: TransactionService, transaction_id: uuid.UUID, score: int) -> None:
        await svc.submit_rating(transaction_id, self.agent_id, score)
        logger.info("🟢 SELLER: Buyer rated", transaction_id=str(transaction_id), score=score)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def print_summary(
    svc: TransactionService,
    session: Any,
    transaction_id: uuid.UUID,
    seller: SellerBot,
) -> None:
    """Print the final state of a transaction, its escrow and the seller's stats."""
    transaction = await svc.get_transaction(transaction_id)
    escrow = await svc.get_escrow(transaction_id)
    ratings = await svc.get_transaction_ratings(transaction_id)
    stats = await AgentReputationRepository(session).get(seller.agent_id)

    print(f"  Transaction: {transaction.status}")
    print(f"  Amount: {transaction.amount} {transaction.currency} (fee {transaction.platform_fee})")
    print(f"  Escrow: {escrow.status} ({escrow.provider_ref or 'no provider ref'})")
    for rating in ratings:
        print(f"  Rating: {rating.score}/5 from {str(rating.rater_id)[:8]}")
    if stats is not None:
        print(
            f"  Seller stats: {stats.successful_trades}/{stats.total_transactions} trades, "
            f"avg rating {stats.average_rating} ({stats.rating_count})"
        )
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    """Listing purchase: fund, deliver, confirm, complete."""
    banner("SCENARIO 1: Happy Path — Listing Purchase")

    buyer = BuyerBot()
    seller = SellerBot()

    async with get_session() as session:
        svc = service_for(session)

        section("Step 1: Operator opens the transaction")
        transaction = await svc.create_transaction(
            buyer.agent_id,
            seller.agent_id,
            Decimal("50.00"),
            origin=TransactionOrigin(listing_id=uuid.uuid4()),
        )

        section("Step 2: Buyer funds escrow")
        await buyer.fund(svc, transaction.id)

        section("Step 3: Seller delivers")
        await seller.deliver(svc, transaction.id, "https://files.example.com/report.pdf")

        section("Step 4: Buyer confirms, operator completes")
        await buyer.confirm(svc, transaction.id)
        await svc.complete_transaction(transaction.id)

        await print_summary(svc, session, transaction.id, seller)


# ===========================================================================
# Scenario 2: Dispute and Refund
# ===========================================================================
async def scenario_2_dispute_and_refund() -> None:
    """Seller never delivers; the buyer gets the held funds back."""
    banner("SCENARIO 2: Dispute and Refund")

    buyer = BuyerBot()
    seller = SellerBot()

    async with get_session() as session:
        svc = service_for(session)

        section("Step 1: Setup (Open -> Fund)")
        transaction = await svc.create_transaction(
            buyer.agent_id, seller.agent_id, Decimal("75.00")
        )
        await buyer.fund(svc, transaction.id)

        section("Step 2: Buyer disputes")
        await buyer.dispute(svc, transaction.id, "no delivery after 48h")

        section("Step 3: Operator refunds")
        await svc.refund_transaction(transaction.id)

        await print_summary(svc, session, transaction.id, seller)


# ===========================================================================
# Scenario 3: Rating Auto-Completion
# ===========================================================================
async def scenario_3_rating_auto_completion() -> None:
    """Both parties rate a delivered trade, which completes it."""
    banner("SCENARIO 3: Rating Auto-Completion — Accepted Offer")

    buyer = BuyerBot()
    seller = SellerBot()

    async with get_session() as session:
        svc = service_for(session)

        section("Step 1: Setup (Offer accepted -> Fund -> Deliver)")
        transaction_id = await svc.create_from_offer(
            uuid.uuid4(),
            uuid.uuid4(),
            buyer.agent_id,
            seller.agent_id,
            Decimal("120.00"),
        )
        await buyer.fund(svc, transaction_id)
        await seller.deliver(svc, transaction_id, "git+https://example.com/repo@v1.0")

        section("Step 2: Both parties rate")
        await buyer.rate(svc, transaction_id, 5)
        await seller.rate(svc, transaction_id, 4)

        await print_summary(svc, session, transaction_id, seller)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_dispute_and_refund,
    3: scenario_3_rating_auto_completion,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when scenario is 0."""
    if scenario and scenario not in SCENARIOS:
        print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
        return

    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n  THE AGENTIC MARKETPLACE — SIMULATION")
        print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'PostgreSQL'}")
        print("  Payments: Stripe (simulated)\n")

        selected = [SCENARIOS[scenario]] if scenario else list(SCENARIOS.values())
        for run_scenario in selected:
            await run_scenario()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Agentic Marketplace Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()

    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
