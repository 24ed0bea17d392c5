"""Named rate limit presets (limit per window).

Routes reference these by name: `@rate_limit('public')`.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Optional

MINUTE_MS = 60 * 1000


@dataclass(frozen=True)
class RateLimitPreset:
    limit: int
    window_ms: int
    message: str
    skip: Optional[Callable] = None


def _skip_in_debug(request) -> bool:
    from flask import current_app
    return bool(current_app.debug)


RATE_LIMIT_PRESETS: Dict[str, RateLimitPreset] = {
    'auth': RateLimitPreset(5, 15 * MINUTE_MS, 'Too many authentication attempts. Please try again in 15 minutes.'),
    'public': RateLimitPreset(50, MINUTE_MS, 'API rate limit exceeded. Please try again in a minute.'),
    'admin': RateLimitPreset(20, MINUTE_MS, 'Admin API rate limit exceeded. Please try again in a minute.'),
    'test': RateLimitPreset(2, MINUTE_MS, 'Test endpoints are rate limited for security.', skip=_skip_in_debug),
    'general': RateLimitPreset(100, MINUTE_MS, 'Rate limit exceeded. Please try again later.'),
    'upload': RateLimitPreset(10, MINUTE_MS, 'Upload rate limit exceeded. Please try again in a minute.'),
    'search': RateLimitPreset(30, MINUTE_MS, 'Search rate limit exceeded. Please try again in a minute.'),
    'status_lookup': RateLimitPreset(5, MINUTE_MS, 'Too many requests. Please try again later.'),
}

__all__ = ['RateLimitPreset', 'RATE_LIMIT_PRESETS', 'MINUTE_MS']
