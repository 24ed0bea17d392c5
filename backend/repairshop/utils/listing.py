"""List/detail response helpers: pagination, ETag + Last-Modified, conditional 304s.

Every collection endpoint returns
    {'data': [...], 'pagination': {'total', 'limit', 'offset', 'returned'}}
with an ETag derived from the page ids and the newest `updated_at` on the page.
HEAD requests get identical headers and an empty body.
"""
from __future__ import annotations
from typing import Callable, Iterable, Optional, Tuple
from flask import request, abort, make_response, jsonify
from sqlalchemy.orm import Query
from repairshop.config.pagination import normalize_pagination
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds (microseconds removed)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace('+00:00', 'Z')


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(ids: Iterable, total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def _http_date(dt: datetime) -> str:
    """Return RFC1123 HTTP-date string in GMT."""
    return format_datetime(dt, usegmt=True)


def _stamp(resp, etag: str, latest_c: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest_c:
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = _iso(latest_c)
    return resp


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    ids = [r.get('id') for r in rows]
    latest_ts_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    etag = compute_etag(ids, total, limit, offset, _iso(latest_ts_c) if latest_ts_c else '')
    resp = make_response(build_list_payload(rows, total, limit, offset))
    return _stamp(resp, etag, latest_ts_c), etag


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    # Try ISO 8601 first
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        dt = None
    if dt is None:
        # Then HTTP-date (RFC 1123)
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt and dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Evaluate conditional request headers.

    Precedence: If-None-Match over If-Modified-Since (per RFC 9110 semantics).
    Returns a 304 response object if conditions satisfied, else None.
    """
    latest_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    inm = request.headers.get('If-None-Match')
    if inm and inm.strip('"') == etag_value:
        return _stamp(make_response('', 304), etag_value, latest_c)
    # Only evaluate If-Modified-Since if If-None-Match was not a match / absent
    ims_dt = _parse_if_modified_since(request.headers.get('If-Modified-Since'))
    if ims_dt and latest_c and latest_c <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
        return _stamp(make_response('', 304), etag_value, latest_c)
    return None


def _finish(resp):
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


def list_response(q: Query, serialize: Callable, latest_of: Callable = lambda row: row.updated_at):
    """Paginate an already filtered + sorted query and render the cached list payload."""
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((latest_of(r) for r in rows if latest_of(r) is not None), default=None)
    resp, etag = make_cached_list_response([serialize(r) for r in rows], total, limit, offset, latest_ts)
    cond = handle_conditional(etag, latest_ts)
    return _finish(cond or resp)


def detail_response(body: dict, latest_ts: Optional[datetime]):
    """Single resource with ETag / Last-Modified; honours conditional headers and HEAD."""
    latest_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    etag = compute_etag([body.get('id')], 1, 1, 0, _iso(latest_c) if latest_c else '')
    cond = handle_conditional(etag, latest_ts)
    if cond:
        return _finish(cond)
    return _finish(_stamp(make_response(jsonify(body)), etag, latest_c))


__all__ = [
    'apply_pagination', 'compute_etag', 'build_list_payload', 'make_cached_list_response',
    'handle_conditional', 'list_response', 'detail_response', 'canonicalize_timestamp',
]
