"""
Endpoint key and day bucket helpers.

Endpoint keys look like ``"GET /weather"``. Day buckets are keyed by ISO
``YYYY-MM-DD`` strings in process-local time; labels use fixed English names
so output never depends on the host locale.
"""

import logging
from datetime import date, datetime
from typing import Union

from .errors import InvalidKeyError

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "GET"

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def validate_method(method) -> str:
    """Return the upper-cased method or raise InvalidKeyError."""
    if not isinstance(method, str):
        raise InvalidKeyError(f"method must be a string, got {type(method).__name__}")
    cleaned = method.strip().upper()
    if not cleaned or not cleaned.isalpha():
        raise InvalidKeyError(f"invalid HTTP method: {method!r}")
    return cleaned


def normalize_path(path) -> str:
    """Canonical path: no query string, leading slash, no trailing slash."""
    if not isinstance(path, str):
        path = "" if path is None else str(path)
    path = path.split("?", 1)[0].strip()
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


def endpoint_key(path, method=DEFAULT_METHOD) -> str:
    """Build the ``METHOD path`` counter key.

    Bad methods fall back to ``GET`` instead of failing the caller.
    """
    try:
        verb = validate_method(method)
    except InvalidKeyError as exc:
        logger.debug("Defaulting method to %s: %s", DEFAULT_METHOD, exc)
        verb = DEFAULT_METHOD
    return f"{verb} {normalize_path(path)}"


def day_key(day: Union[date, datetime, str]) -> str:
    """Bucket key for a calendar day."""
    if isinstance(day, datetime):
        day = day.date()
    if isinstance(day, date):
        return day.isoformat()
    # Validate string input; raises ValueError on garbage
    return date.fromisoformat(str(day).strip()).isoformat()


def short_label(day: date) -> str:
    """Three-letter weekday label, e.g. ``Sat``."""
    return _WEEKDAYS[day.weekday()]


def date_label(day: date) -> str:
    """Human label like ``Sat Oct 18 2026``."""
    return f"{_WEEKDAYS[day.weekday()]} {_MONTHS[day.month - 1]} {day.day:02d} {day.year}"
