"""ULID generation helper utilities."""

from datetime import datetime
from typing import Optional

import ulid


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ulid.ULID())


def parse_ulid(ulid_str: str) -> Optional[ulid.ULID]:
    """Parse and validate a ULID string."""
    try:
        return ulid.ULID.from_str(ulid_str)
    except (ValueError, TypeError):
        return None


def get_timestamp_from_ulid(ulid_str: str) -> Optional[datetime]:
    """Extract the creation timestamp encoded in a ULID."""
    parsed = parse_ulid(ulid_str)
    return parsed.datetime if parsed else None


def is_valid_ulid(ulid_str: str) -> bool:
    """Check if a string is a valid ULID."""
    return parse_ulid(ulid_str) is not None
