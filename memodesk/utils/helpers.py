"""Shared parsing helpers for the memo blueprint and service layer.

parse_date_input:  raises ValueError on bad input (service turns it into ValidationError)
parse_bool:        query-string flags such as ?preview=true
normalize_tags:    de-duplicated, order-preserving list of non-blank strings
"""
from datetime import date, datetime


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS, DD.MM.YYYY, date objects.
    Returns None for empty input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    value = str(value)
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        try:
            return datetime.strptime(value, "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValueError(
                "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
            ) from exc


def parse_bool(value, default=False):
    """Interpret common truthy strings ("1", "true", "yes", "on")."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def normalize_tags(tags):
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    seen = []
    for tag in tags:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen
