"""Database infrastructure — engine, ORM models, and repositories."""

from agentic_marketplace.infrastructure.database.engine import (
    close_db,
    create_sqlite_engine,
    get_async_session,
    get_session_factory,
    init_db,
)
from agentic_marketplace.infrastructure.database.orm_models import (
    AgentReputation,
    Base,
    EscrowAccount,
    Rating,
    Transaction,
)
from agentic_marketplace.infrastructure.database.repositories import (
    AgentReputationRepository,
    EscrowRepository,
    RatingRepository,
    TransactionRepository,
)

__all__ = [
    "AgentReputation",
    "Base",
    "EscrowAccount",
    "Rating",
    "Transaction",
    "AgentReputationRepository",
    "EscrowRepository",
    "RatingRepository",
    "TransactionRepository",
    "create_sqlite_engine",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
