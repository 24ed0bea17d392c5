from __future__ import annotations
from typing import Optional
from flask import abort

def apply_multi_sort(query, sort_expr: Optional[str], allowed: dict, tie_breaker, default: Optional[str] = None):
    """Apply multi-field sort to a SQLAlchemy query.

    sort_expr: comma-separated tokens, each optionally prefixed with '-' (e.g. `-scheduled_date,status`).
    allowed: mapping of field key -> column object; unknown keys abort 400.
    tie_breaker: column appended ascending for deterministic paging.
    default: sort expression used when the client sends none.
    """
    sort_expr = sort_expr or default
    clauses = []
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('-')
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
