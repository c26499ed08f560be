"""Dialect-specific INSERT construct for insert-if-absent statements."""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession):
    """Return the ``insert`` function supporting ON CONFLICT for the session's database.

    Raises:
        NotImplementedError: For databases without ON CONFLICT support
    """
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert
    if dialect_name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"ON CONFLICT inserts are not supported on {dialect_name}")
