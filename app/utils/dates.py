from datetime import datetime, timezone


def utcnow():
    """Current time as a naive UTC datetime, matching the stored columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(raw):
    """
    Parse an ISO 8601 string into a naive UTC datetime.

    Returns None for empty input and raises ValueError for malformed input.
    Aware values are converted to UTC first; naive values are taken as UTC.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
