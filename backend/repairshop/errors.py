"""Domain exceptions raised by the service layer.

The app-level error handler renders these with the same JSON shape used for
`abort()` errors, using `status_code` / `title` below.
"""
from __future__ import annotations


class RepairShopError(Exception):
    status_code = 400
    title = 'Bad Request'


class InvalidTransition(RepairShopError):
    status_code = 400
    title = 'Bad Request'

    def __init__(self, current: str, target: str, field_name: str = 'status'):
        self.current = current
        self.target = target
        super().__init__(f"Invalid {field_name} transition {current} -> {target}")


class NotFound(RepairShopError):
    status_code = 404
    title = 'Not Found'


class Conflict(RepairShopError):
    status_code = 409
    title = 'Conflict'


class ExternalServiceError(RepairShopError):
    status_code = 502
    title = 'Bad Gateway'

    def __init__(self, message: str, upstream_status: int | None = None):
        self.upstream_status = upstream_status
        super().__init__(message)


__all__ = ['RepairShopError', 'InvalidTransition', 'NotFound', 'Conflict', 'ExternalServiceError']
