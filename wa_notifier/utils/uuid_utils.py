"""Correlation IDs for audit log entries."""

import uuid


def correlation_id() -> str:
    """Generate a new UUID v4 correlation ID.

    One ID ties a detected change to the delivery entries it produces.

    Examples:
        >>> len(correlation_id())
        36
    """
    return str(uuid.uuid4())
