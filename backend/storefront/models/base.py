"""
Shared model helpers

Everything the table modules have in common.
"""
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel


def utc_now() -> datetime:
    """
    Current time in UTC

    Returns:
        timezone-aware datetime
    """
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    """Primary keys of users and orders are UUID4 strings."""
    return str(uuid.uuid4())


__all__ = ["SQLModel", "utc_now", "new_uuid"]
