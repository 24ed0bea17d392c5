"""Audit decorators.

Two layers:

`with_audit(config)` wraps a whole endpoint and records the HTTP exchange:

    @public_bp.post('/appointments')
    @with_audit('public')
    @rate_limit('public')
    def create_public_appointment(): ...

  - log_requests   -> ApiRequestLog row (status, duration, bodies only with include_body)
  - log_activities -> UserActivityLog row for an authenticated caller when status < 400
  - log_security   -> system UserActivityLog (user_id NULL) for 401/403, 429 and 5xx

`audit_log(action, ...)` records one business activity derived from the handler's
JSON result:

    @audit_log('appointment_confirmed', entity='appointment', entity_id_key='id',
               diff_keys=['status'], pre_fetch=lambda a, kw: _snapshot(kw['appointment_id']))
    def confirm(appointment_id): ...

  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: path parameter used for entity_id when the key is absent.
  meta_keys / meta_builder: build the details dict.
  diff_keys + pre_fetch: attach {'changes': {key: {'before', 'after'}}}.

Audit writes never change the wrapped response: failures are logged and rolled back.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, replace
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict, Union

from flask import request, make_response, g
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from werkzeug.exceptions import HTTPException

from repairshop import get_db
from repairshop.errors import RepairShopError
from repairshop.services.audit import add_activity, add_request_log, commit_audit_safely
from repairshop.services.request_info import client_ip

logger = logging.getLogger(__name__)

BODY_METHODS = ('POST', 'PUT', 'PATCH')


@dataclass(frozen=True)
class AuditConfig:
    enabled: bool = True
    log_requests: bool = True
    log_activities: bool = False
    log_security: bool = False
    include_body: bool = False
    activity_type: Optional[str] = None
    entity_type: Optional[str] = None
    extract_entity_id: Optional[Callable[[Any, Any], Any]] = None
    extract_details: Optional[Callable[[Any, Any], Dict[str, Any]]] = None
    skip: Optional[Callable[[Any], bool]] = None


AUDIT_PRESETS: Dict[str, AuditConfig] = {
    # Never store bodies here: they carry passwords
    'auth': AuditConfig(log_requests=True, log_activities=True, log_security=True, include_body=False,
                        activity_type='auth_operation'),
    'public': AuditConfig(log_requests=True, log_activities=False, log_security=True, include_body=True,
                          activity_type='public_api_request'),
    'admin': AuditConfig(log_requests=True, log_activities=True, log_security=True, include_body=True,
                         activity_type='admin_operation'),
    'business': AuditConfig(log_requests=False, log_activities=True, log_security=False, include_body=False),
    'general': AuditConfig(log_requests=True, log_activities=False, log_security=False, include_body=False),
}


def _current_user_id() -> Optional[int]:
    try:
        verify_jwt_in_request(optional=True)
        ident = get_jwt_identity()
    except Exception:
        # expired / malformed tokens are audited as anonymous
        return None
    return int(ident) if ident is not None else None


def _status_for(exc: Exception) -> int:
    if isinstance(exc, HTTPException):
        return exc.code or 500
    if isinstance(exc, RepairShopError):
        return exc.status_code
    if isinstance(exc, JWTExtendedException):
        return 401
    return 500


def _security_event(status: int, user_id: Optional[int], duration_ms: int, error: Optional[str] = None):
    if status in (401, 403):
        event = 'permission_denied'
    elif status == 429:
        event = 'rate_limit_exceeded'
    elif status >= 500:
        event = 'server_error' if error is None else 'endpoint_error'
    else:
        return
    details = {
        'endpoint': request.path,
        'method': request.method,
        'status': status,
        'duration_ms': duration_ms,
        'ip_address': client_ip(),
        'actor_user_id': user_id,
    }
    if error:
        details['error'] = error
    # System events carry no user_id
    add_activity(event, 'endpoint', None, details, system=True)


def with_audit(config: Union[str, AuditConfig] = 'general', **overrides):
    cfg = AUDIT_PRESETS[config] if isinstance(config, str) else config
    if overrides:
        cfg = replace(cfg, **overrides)

    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not cfg.enabled or (cfg.skip and cfg.skip(request)):
                return fn(*args, **kwargs)
            started = time.monotonic()
            user_id = _current_user_id()
            request_body = None
            if cfg.include_body and request.method in BODY_METHODS:
                request_body = request.get_json(silent=True)
            try:
                resp = make_response(fn(*args, **kwargs))
            except Exception as exc:
                status = _status_for(exc)
                duration_ms = int((time.monotonic() - started) * 1000)
                # Discard the failed unit of work before writing audit rows
                get_db().rollback()
                try:
                    if cfg.log_requests:
                        add_request_log(**_request_fields(status, duration_ms, request_body, None, str(exc) or exc.__class__.__name__))
                    if cfg.log_security:
                        _security_event(status, user_id, duration_ms, error=str(exc) or exc.__class__.__name__)
                    commit_audit_safely()
                except Exception:
                    logger.exception('audit write failed for %s %s', request.method, request.path)
                    get_db().rollback()
                raise
            duration_ms = int((time.monotonic() - started) * 1000)
            try:
                status = resp.status_code
                body = resp.get_json(silent=True) if resp.is_json else None
                if cfg.log_requests:
                    response_body = body if cfg.include_body and status < 400 else None
                    add_request_log(**_request_fields(status, duration_ms, request_body, response_body, None))
                if cfg.log_activities and user_id is not None and status < 400 and cfg.activity_type:
                    entity_id = cfg.extract_entity_id(request, body) if cfg.extract_entity_id else None
                    details = (cfg.extract_details(request, body) if cfg.extract_details
                               else {'endpoint': request.path, 'method': request.method})
                    add_activity(cfg.activity_type, cfg.entity_type, entity_id, details, user_id=user_id)
                if cfg.log_security:
                    _security_event(status, user_id, duration_ms)
                commit_audit_safely()
            except Exception:
                logger.exception('audit write failed for %s %s', request.method, request.path)
                get_db().rollback()
            return resp
        return wrapper
    return outer


def _request_fields(status: int, duration_ms: int, request_body, response_body, error: Optional[str]):
    return {
        'api_key_id': getattr(g, 'api_key_id', None),
        'endpoint': request.path,
        'method': request.method,
        'origin': request.headers.get('Origin'),
        'ip_address': client_ip(),
        'user_agent': (request.headers.get('User-Agent') or '')[:255] or None,
        'request_body': request_body,
        'response_status': status,
        'response_body': response_body,
        'error_message': error,
        'duration_ms': duration_ms,
    }


def _extract_payload(rv: Any):
    """Return the JSON-able dict for inspection from dict / (dict, status[, headers]) / Response."""
    if isinstance(rv, tuple) and rv:
        rv = rv[0]
    if hasattr(rv, 'get_json'):
        return rv.get_json(silent=True)
    return rv


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = None
            if diff_keys and pre_fetch:
                try:
                    before_snapshot = pre_fetch(args, kwargs)
                except Exception:
                    logger.exception('audit pre_fetch failed for %s', action)
            rv = fn(*args, **kwargs)
            try:
                data = _extract_payload(rv)
                if not isinstance(data, dict):
                    add_activity(action, entity, kwargs.get(entity_id_arg) if entity_id_arg else None)
                    commit_audit_safely()
                    return rv
                entity_id = None
                if entity_id_key and entity_id_key in data:
                    entity_id = data.get(entity_id_key)
                elif entity_id_arg and entity_id_arg in kwargs:
                    entity_id = kwargs.get(entity_id_arg)
                if meta_builder:
                    meta = meta_builder(data, rv, args, kwargs) or {}
                elif meta_keys:
                    meta = {k: data.get(k) for k in meta_keys if k in data}
                else:
                    meta = {}
                if diff_keys and isinstance(before_snapshot, dict):
                    changes = {}
                    for k in diff_keys:
                        if k in before_snapshot and k in data and before_snapshot.get(k) != data.get(k):
                            changes[k] = {'before': before_snapshot.get(k), 'after': data.get(k)}
                    if changes:
                        meta['changes'] = changes
                add_activity(action, entity, entity_id, meta)
                commit_audit_safely()
            except Exception:
                logger.exception('audit_log failed for %s', action)
                get_db().rollback()
            return rv
        return wrapper
    return outer


__all__ = ['AuditConfig', 'AUDIT_PRESETS', 'with_audit', 'audit_log']
