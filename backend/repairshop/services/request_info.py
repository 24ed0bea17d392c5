from __future__ import annotations
from flask import request


def client_ip() -> str:
    """Best-effort caller IP: first X-Forwarded-For hop, then X-Real-IP, then 'anonymous'."""
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()
    return 'anonymous'


def user_agent() -> str:
    return request.headers.get('User-Agent') or 'unknown'
