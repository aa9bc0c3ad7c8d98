"""
Utility functions for the application.
"""
from typing import Any, Dict
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_between(earlier: date, today: date) -> int:
    """Whole days elapsed from earlier to today."""
    return (today - earlier).days


def format_error(message: str, details: Any = None) -> Dict[str, Any]:
    """Format error response."""
    response = {"error": message}
    if details:
        response["details"] = details
    return response
