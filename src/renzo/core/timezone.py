"""UTC timezone enforcement.

This module sets the TZ environment variable to UTC to ensure
consistent datetime behavior across all environments.
"""

import os
from datetime import datetime, timezone

from sqlalchemy import DateTime

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"

# Column type for every timestamp (TIMESTAMPTZ on PostgreSQL)
UtcDateTime = DateTime(timezone=True)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
