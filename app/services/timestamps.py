"""
Timestamp helpers shared by the normalizers.
"""

from datetime import UTC, datetime
from typing import Any


def parse_iso_timestamp(value: Any) -> datetime | None:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Empty values return None; naive timestamps are taken as UTC.

    Raises:
        ValueError: If the value is present but not a valid timestamp
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected an ISO 8601 string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    try:
        return parsed.astimezone(UTC)
    except OverflowError as exc:
        raise ValueError(f"timestamp out of range: {value}") from exc


def from_epoch_millis(value: int | None) -> datetime | None:
    """
    Epoch milliseconds to an aware UTC datetime; zero and None mean absent.

    Raises:
        ValueError: If the value is outside the range datetime can represent
    """
    if not value:
        return None
    try:
        return datetime.fromtimestamp(value / 1000, UTC)
    except (ValueError, OverflowError, OSError) as exc:
        raise ValueError(f"epoch milliseconds out of range: {value}") from exc
