"""Reusable request validation helpers.

All helpers abort with 400 and a short `<field> ...` description so clients get
consistent error details.
"""
from __future__ import annotations
from typing import Iterable, Any, Optional
from flask import abort, request


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that new_status is inside allowed.

    Returns the status (to enable inline usage) or aborts with 400.
    """
    if new_status not in allowed:
        abort(400, description=f"{field_name} invalid")
    return new_status


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description='JSON object body required')
    return data


def require_fields(data: dict, *names: str):
    missing = [n for n in names if data.get(n) in (None, '', [])]
    if missing:
        abort(400, description=f"{', '.join(missing)} required")


def optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        abort(400, description=f'{field_name} must be an integer')


def dollars_to_cents(value: Any, field_name: str) -> Optional[int]:
    """Accept a dollar amount (number or numeric string) and store it as integer cents."""
    if value is None or value == '':
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        abort(400, description=f'{field_name} must be a number')
    if amount < 0:
        abort(400, description=f'{field_name} must be >= 0')
    return int(round(amount * 100))


__all__ = ['validate_status', 'json_body', 'require_fields', 'optional_int', 'dollars_to_cents']
