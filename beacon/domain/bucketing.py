from datetime import datetime
from typing import Optional

BUCKET_FORMATS = {
    "day": "%Y-%m-%d",
    "hour": "%Y-%m-%d %H",
    "minute": "%Y-%m-%d %H:%M",
}

# Larger numeric timestamps are taken as milliseconds
_MILLIS_THRESHOLD = 10**11


def bucket_key(moment: datetime, granularity: str = "day") -> str:
    fmt = BUCKET_FORMATS.get(granularity)
    if fmt is None:
        raise ValueError(f"Unknown bucket granularity: {granularity}")
    return moment.strftime(fmt)


def parse_client_timestamp(value: str) -> Optional[datetime]:
    """Parse a beacon ``time`` value into a local naive datetime.

    Accepts unix seconds, unix milliseconds or ISO-8601. Returns None when
    the value is empty or unrecognised.
    """
    value = (value or "").strip()
    if not value:
        return None
    if value.isdigit():
        ts = int(value)
        if ts >= _MILLIS_THRESHOLD:
            ts = ts // 1000
        try:
            return datetime.fromtimestamp(ts)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
