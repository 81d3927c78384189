# utils/timeutils.py
from datetime import datetime, timezone


def normalize_epoch(ts: float) -> float:
    """
    Venue timestamps arrive either in seconds or in milliseconds.
    Return seconds.
    """
    ts = float(ts)
    if ts > 10**12:
        ts /= 1000
    return ts


def to_iso(ts: float) -> str:
    """Epoch seconds → ISO-8601 string in UTC."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()