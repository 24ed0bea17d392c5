"""API key issuance and verification for the public booking widget.

Keys look like `tpg_<43 url-safe chars>`; only sha256(key) and the first 8 characters
are stored, so the plaintext is available exactly once (in the create response).
"""
from __future__ import annotations
import base64
import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from sqlalchemy import select

from repairshop import get_db
from repairshop.models.api_key import ApiKey, AllowedDomain
from repairshop.utils.timeutil import utcnow

KEY_PREFIX = 'tpg_'
DEFAULT_PERMISSIONS = ['form_submission']
DEFAULT_RATE_LIMIT_PER_HOUR = 100


@dataclass
class ApiKeyVerification:
    valid: bool
    error: Optional[str] = None
    api_key_id: Optional[int] = None
    permissions: List[str] = field(default_factory=list)


def generate_api_key() -> str:
    raw = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode().rstrip('=')
    return f"{KEY_PREFIX}{raw}"


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


def normalize_domains(domains: Optional[Iterable[str]]) -> List[str]:
    out: List[str] = []
    for d in domains or []:
        d = (d or '').strip().lower()
        if d and d not in out:
            out.append(d)
    return out


def create_api_key(name: str, description: Optional[str] = None, domains: Optional[Iterable[str]] = None,
                   permissions: Optional[List[str]] = None, expires_in_days: Optional[int] = None,
                   created_by: Optional[int] = None):
    """Create and flush a key; returns (ApiKey, plaintext). Caller commits."""
    session = get_db()
    plaintext = generate_api_key()
    key = ApiKey(
        name=name,
        description=description,
        key_hash=hash_api_key(plaintext),
        key_prefix=plaintext[:8],
        permissions=list(permissions) if permissions else list(DEFAULT_PERMISSIONS),
        is_active=True,
        expires_at=utcnow() + timedelta(days=int(expires_in_days)) if expires_in_days else None,
        rate_limit_per_hour=DEFAULT_RATE_LIMIT_PER_HOUR,
        created_by=created_by,
    )
    for d in normalize_domains(domains):
        key.domains.append(AllowedDomain(domain=d, is_active=True))
    session.add(key)
    session.flush()
    return key, plaintext


def replace_domains(key: ApiKey, domains: Iterable[str]):
    key.domains.clear()
    get_db().flush()
    for d in normalize_domains(domains):
        key.domains.append(AllowedDomain(domain=d, is_active=True))


def origin_host(origin: str) -> str:
    parsed = urlparse(origin if '://' in origin else f'//{origin}')
    return (parsed.hostname or '').lower()


def domain_allowed(host: str, allowed: Iterable[str]) -> bool:
    for domain in allowed:
        if domain == '*' or host == domain or host.endswith('.' + domain):
            return True
    return False


def verify_api_key(key: str, origin: Optional[str] = None) -> ApiKeyVerification:
    session = get_db()
    row = session.execute(
        select(ApiKey).where(ApiKey.key_hash == hash_api_key(key or ''), ApiKey.is_active.is_(True))
    ).scalar_one_or_none()
    if row is None:
        return ApiKeyVerification(False, 'Invalid API key')
    now = utcnow()
    if row.expires_at is not None and row.expires_at < now:
        return ApiKeyVerification(False, 'API key has expired')
    domains = [d.domain for d in row.domains if d.is_active]
    if domains:
        if not origin:
            return ApiKeyVerification(False, 'Origin header required')
        if not domain_allowed(origin_host(origin), domains):
            return ApiKeyVerification(False, 'Domain not whitelisted')
    row.last_used_at = now
    session.commit()
    return ApiKeyVerification(True, api_key_id=row.id, permissions=list(row.permissions or []))


def api_key_json(key: ApiKey, plaintext: Optional[str] = None):
    body = {
        'id': key.id,
        'name': key.name,
        'description': key.description,
        'key_prefix': key.key_prefix,
        'permissions': key.permissions or [],
        'is_active': key.is_active,
        'expires_at': key.expires_at.isoformat() if key.expires_at else None,
        'last_used_at': key.last_used_at.isoformat() if key.last_used_at else None,
        'rate_limit_per_hour': key.rate_limit_per_hour,
        'domains': [d.domain for d in key.domains],
    }
    if plaintext:
        body['key'] = plaintext
    return body


__all__ = [
    'generate_api_key', 'hash_api_key', 'create_api_key', 'replace_domains', 'verify_api_key',
    'domain_allowed', 'origin_host', 'api_key_json', 'ApiKeyVerification',
]
