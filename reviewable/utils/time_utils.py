"""
Timestamp helpers shared by the repositories.

SQLite stores timestamps as ``%Y-%m-%dT%H:%M:%SZ`` text (see ``db/schema.py``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def parse_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a SQLite timestamp column into an aware UTC datetime.

    Accepts both the schema's ``Z``-suffixed format and ISO-8601 strings
    with an explicit offset. Returns ``None`` for ``None``.
    """
    if value is None:
        return None
    try:
        return datetime.strptime(value, DB_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
