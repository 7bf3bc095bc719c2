# roster_app/utils/request_helpers.py
"""
Shared parsing helpers for JSON API requests
"""

from flask import request

from roster_app.errors import ValidationError

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100


def _positive_int(value, fallback):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def get_pagination():
    """Return ``(page, page_size)`` from ``page``/``limit`` query args"""
    page = _positive_int(request.args.get("page"), DEFAULT_PAGE)
    page_size = min(_positive_int(request.args.get("limit"), DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    return page, page_size


def get_json_body():
    """Return the JSON object body or raise ``ValidationError``"""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
