"""Repository layer for Renzo backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from renzo.repositories.credit_pack import CreditPackRepository
from renzo.repositories.credit_transaction import CreditTransactionRepository, LedgerStats
from renzo.repositories.job import JobRepository
from renzo.repositories.payment_event import PaymentEventRepository

__all__ = [
    "CreditPackRepository",
    "CreditTransactionRepository",
    "JobRepository",
    "LedgerStats",
    "PaymentEventRepository",
]
