from __future__ import annotations
import logging
from functools import wraps
from typing import Callable, Optional

from flask import current_app, request, make_response, jsonify

from repairshop.config.rate_limits import RATE_LIMIT_PRESETS, RateLimitPreset
from repairshop.services.rate_limiter import RATE_LIMIT_STORE
from repairshop.services.request_info import client_ip, user_agent

logger = logging.getLogger(__name__)


def default_key(req) -> str:
    return f"{client_ip()}:{user_agent()}:{req.path}"


def rate_limit(preset: str = 'general', *, limit: Optional[int] = None, window_ms: Optional[int] = None,
               message: Optional[str] = None, key_func: Optional[Callable] = None,
               skip: Optional[Callable] = None, store=None):
    """Reject requests over `limit` per window with 429; allowed responses carry X-RateLimit-* headers."""
    base: RateLimitPreset = RATE_LIMIT_PRESETS[preset]
    eff_limit = limit if limit is not None else base.limit
    eff_window = window_ms if window_ms is not None else base.window_ms
    eff_message = message or base.message
    eff_skip = skip or base.skip
    make_key = key_func or default_key

    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_app.config.get('RATE_LIMIT_ENABLED', True):
                return fn(*args, **kwargs)
            if eff_skip and eff_skip(request):
                return fn(*args, **kwargs)
            result = (store or RATE_LIMIT_STORE).hit(make_key(request), eff_limit, eff_window)
            if not result.allowed:
                logger.warning('Rate limit exceeded for %s %s from %s (%d/%d)',
                               request.method, request.path, client_ip(), result.current, result.limit)
                resp = make_response(jsonify({
                    'error': eff_message,
                    'limit': result.limit,
                    'current': result.current,
                    'resetTime': result.reset_time,
                }), 429)
            else:
                resp = make_response(fn(*args, **kwargs))
            resp.headers.update(result.headers())
            return resp
        return wrapper
    return outer


__all__ = ['rate_limit', 'default_key']
