"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from renzo.models.credit_pack import CreditPack
from renzo.models.credit_transaction import CreditTransaction, CreditTransactionType
from renzo.models.job import TERMINAL_STATUSES, InvalidStateTransition, Job, JobStatus
from renzo.models.payment_event import PaymentEvent, PaymentEventStatus

__all__ = [
    "CreditPack",
    "CreditTransaction",
    "CreditTransactionType",
    "InvalidStateTransition",
    "Job",
    "JobStatus",
    "PaymentEvent",
    "PaymentEventStatus",
    "TERMINAL_STATUSES",
]
