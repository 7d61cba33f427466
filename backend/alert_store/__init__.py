from .database import SQLiteAlertDB
from .time_utils import monotonic_after, parse_iso, to_iso, utc_now

__all__ = [
    "SQLiteAlertDB",
    "monotonic_after",
    "parse_iso",
    "to_iso",
    "utc_now",
]
