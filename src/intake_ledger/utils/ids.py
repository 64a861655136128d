"""
Record ID generation utilities.

IDs are opaque strings: the creation instant in milliseconds followed by a
random suffix, so ids sort roughly by creation time and never collide across
devices in practice.
"""

import secrets

from intake_ledger.utils.timezone_utils import now_ms


def generate_record_id(timestamp_ms: int | None = None) -> str:
    """
    Generate a new opaque record id.

    Args:
        timestamp_ms: Optional creation instant; defaults to now.

    Returns:
        Record id such as ``"1718000000000-5f3a9c1e"``.
    """
    prefix = timestamp_ms if timestamp_ms is not None else now_ms()
    return f"{prefix}-{secrets.token_hex(4)}"
