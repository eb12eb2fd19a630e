# marketplace/utils/dates.py
from datetime import datetime, timezone


def utcnow() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso8601(s):
    if not s: return None
    s = str(s).strip()
    if s.endswith("Z"): s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)   # store naive UTC
    return dt
