from datetime import datetime, timezone

from sqlalchemy import DateTime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# column type for every timestamp; values are always timezone-aware UTC
UtcDateTime = DateTime(timezone=True)
