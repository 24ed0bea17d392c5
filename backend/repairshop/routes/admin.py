from __future__ import annotations
from flask import Blueprint, request, abort
from sqlalchemy import select, func, case
from repairshop.decorators.auth import require_permissions
from repairshop.decorators.audit import with_audit
from repairshop.decorators.rate_limit import rate_limit
from repairshop.errors import NotFound
from repairshop.utils.listing import list_response, detail_response, make_cached_list_response, handle_conditional
from repairshop.utils.filters import apply_filters, eq
from repairshop.utils.timeutil import iso, parse_date_arg, utcnow
from repairshop.utils.validation import json_body, require_fields, optional_int
from repairshop.services.policy import current_user_id
from repairshop.services import api_keys as keys
from repairshop.services import timers
from repairshop.services import users
from repairshop.services.tickets import ticket_json, time_entry_json
from repairshop import get_db
from repairshop.models.api_key import ApiKey
from repairshop.models.audit import UserActivityLog, ApiRequestLog
from repairshop.models.authz import User

admin_bp = Blueprint('admin', __name__)

ACTIVITY_FILTERS = {
    'user_id': {'op': eq(UserActivityLog.user_id), 'coerce': int},
    'activity_type': {'op': eq(UserActivityLog.activity_type)},
    'entity_type': {'op': eq(UserActivityLog.entity_type)},
    'entity_id': {'op': eq(UserActivityLog.entity_id), 'coerce': str},
    'since': {'op': lambda q, v: q.filter(UserActivityLog.created_at >= v), 'coerce': lambda v: parse_date_arg(v, 'since')},
}

REQUEST_FILTERS = {
    'api_key_id': {'op': eq(ApiRequestLog.api_key_id), 'coerce': int},
    'method': {'op': eq(ApiRequestLog.method), 'coerce': lambda v: v.upper()},
    'response_status': {'op': eq(ApiRequestLog.response_status), 'coerce': int},
    'since': {'op': lambda q, v: q.filter(ApiRequestLog.created_at >= v), 'coerce': lambda v: parse_date_arg(v, 'since')},
}


def _activity_json(row: UserActivityLog):
    return {
        'id': row.id,
        'user_id': row.user_id,
        'activity_type': row.activity_type,
        'entity_type': row.entity_type,
        'entity_id': row.entity_id,
        'details': row.details or {},
        'created_at': iso(row.created_at),
    }


def _request_json(row: ApiRequestLog):
    return {
        'id': row.id,
        'api_key_id': row.api_key_id,
        'endpoint': row.endpoint,
        'method': row.method,
        'origin': row.origin,
        'ip_address': row.ip_address,
        'response_status': row.response_status,
        'error_message': row.error_message,
        'duration_ms': row.duration_ms,
        'created_at': iso(row.created_at),
    }


def _get_key(key_id: int) -> ApiKey:
    key = get_db().get(ApiKey, key_id)
    if key is None:
        raise NotFound(f'API key {key_id} not found')
    return key


# --- API keys -------------------------------------------------------------

@admin_bp.route('/api-keys', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.APIKEY.MANAGE')
def list_api_keys():
    q = get_db().query(ApiKey).order_by(ApiKey.id.asc())
    return list_response(q, keys.api_key_json)


@admin_bp.post('/api-keys')
@with_audit('admin', activity_type='api_key_created', entity_type='api_key',
            extract_entity_id=lambda req, body: (body or {}).get('id'),
            extract_details=lambda req, body: {'name': (body or {}).get('name'), 'domains': (body or {}).get('domains')},
            include_body=False)
@require_permissions('ADMIN.APIKEY.MANAGE')
@rate_limit('admin')
def create_api_key():
    data = json_body()
    require_fields(data, 'name')
    domains = data.get('domains') or []
    permissions = data.get('permissions')
    if not isinstance(domains, list) or (permissions is not None and not isinstance(permissions, list)):
        abort(400, description='domains and permissions must be lists')
    expires = optional_int(data.get('expires_in_days'), 'expires_in_days')
    if expires is not None and expires <= 0:
        abort(400, description='expires_in_days must be > 0')
    key, plaintext = keys.create_api_key(data['name'], data.get('description'), domains, permissions,
                                         expires, created_by=current_user_id())
    get_db().commit()
    # Plaintext is only ever returned here
    return keys.api_key_json(key, plaintext), 201


@admin_bp.route('/api-keys/<int:key_id>', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.APIKEY.MANAGE')
def get_api_key(key_id: int):
    key = _get_key(key_id)
    return detail_response(keys.api_key_json(key), key.updated_at)


@admin_bp.patch('/api-keys/<int:key_id>')
@with_audit('admin', activity_type='api_key_updated', entity_type='api_key',
            extract_entity_id=lambda req, body: (body or {}).get('id'))
@require_permissions('ADMIN.APIKEY.MANAGE')
@rate_limit('admin')
def update_api_key(key_id: int):
    data = json_body()
    unknown = sorted(set(data) - {'name', 'description', 'domains', 'permissions', 'is_active', 'rate_limit_per_hour'})
    if unknown:
        abort(400, description=f'Fields not editable: {unknown}')
    key = _get_key(key_id)
    if data.get('name'):
        key.name = data['name']
    if 'description' in data:
        key.description = data['description']
    if 'is_active' in data:
        key.is_active = bool(data['is_active'])
    if 'permissions' in data:
        if not isinstance(data['permissions'], list):
            abort(400, description='permissions must be a list')
        key.permissions = list(data['permissions'])
    if 'rate_limit_per_hour' in data:
        rate = optional_int(data['rate_limit_per_hour'], 'rate_limit_per_hour')
        if rate is None or rate <= 0:
            abort(400, description='rate_limit_per_hour must be > 0')
        key.rate_limit_per_hour = rate
    if 'domains' in data:
        if not isinstance(data['domains'], list):
            abort(400, description='domains must be a list')
        keys.replace_domains(key, data['domains'])
    get_db().commit()
    return keys.api_key_json(key)


@admin_bp.delete('/api-keys/<int:key_id>')
@with_audit('admin', activity_type='api_key_deleted', entity_type='api_key',
            extract_entity_id=lambda req, body: (body or {}).get('id'))
@require_permissions('ADMIN.APIKEY.MANAGE')
@rate_limit('admin')
def delete_api_key(key_id: int):
    session = get_db()
    session.delete(_get_key(key_id))
    session.commit()
    return {'status': 'deleted', 'id': key_id}


# --- Audit logs ------------------------------------------------------------

@admin_bp.route('/audit-logs', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.AUDIT.READ')
def list_audit_logs():
    q = get_db().query(UserActivityLog)
    q = apply_filters(q, ACTIVITY_FILTERS, request.args)
    q = q.order_by(UserActivityLog.id.desc())
    return list_response(q, _activity_json, latest_of=lambda row: row.created_at)


@admin_bp.get('/audit-logs/stats')
@require_permissions('ADMIN.AUDIT.READ')
def audit_log_stats():
    session = get_db()
    since = parse_date_arg(request.args.get('since'), 'since')
    aq = select(UserActivityLog.activity_type, func.count(UserActivityLog.id)).group_by(UserActivityLog.activity_type)
    status_class = case(
        (ApiRequestLog.response_status >= 500, '5xx'),
        (ApiRequestLog.response_status >= 400, '4xx'),
        (ApiRequestLog.response_status >= 300, '3xx'),
        else_='2xx',
    )
    rq = select(status_class, func.count(ApiRequestLog.id)).group_by(status_class)
    if since:
        aq = aq.where(UserActivityLog.created_at >= since)
        rq = rq.where(ApiRequestLog.created_at >= since)
    by_type = {t: c for t, c in session.execute(aq).all()}
    by_status = {s: c for s, c in session.execute(rq).all()}
    return {
        'activities': {'total': sum(by_type.values()), 'by_type': dict(sorted(by_type.items()))},
        'requests': {'total': sum(by_status.values()), 'by_status_class': dict(sorted(by_status.items()))},
        'since': since.isoformat() if since else None,
    }


@admin_bp.route('/api-request-logs', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.AUDIT.READ')
def list_api_request_logs():
    q = get_db().query(ApiRequestLog)
    q = apply_filters(q, REQUEST_FILTERS, request.args)
    q = q.order_by(ApiRequestLog.id.desc())
    return list_response(q, _request_json, latest_of=lambda row: row.created_at)


# --- Timers ------------------------------------------------------------------

@admin_bp.get('/active-timers')
@require_permissions('ADMIN.TIMER.MANAGE')
def active_timers():
    now = utcnow()
    data = []
    for t in timers.running_timers():
        body = ticket_json(t)
        body['elapsed_minutes'] = int((now - t.timer_started_at).total_seconds() // 60)
        data.append(body)
    resp, etag = make_cached_list_response(data, len(data), len(data), 0, None)
    return handle_conditional(etag, None) or resp


@admin_bp.post('/active-timers/clear')
@with_audit('admin', activity_type='timers_cleared', entity_type='ticket')
@require_permissions('ADMIN.TIMER.MANAGE')
def clear_active_timers():
    entries = timers.clear_all_timers(current_user_id())
    return {'cleared': len(entries), 'time_entries': [time_entry_json(e) for e in entries]}


# --- Users -------------------------------------------------------------------

@admin_bp.route('/users', methods=['GET', 'HEAD'])
@require_permissions('ADMIN.USER.MANAGE')
def list_users():
    q = get_db().query(User)
    if role := request.args.get('role'):
        q = q.filter(User.role == role)
    q = q.order_by(User.name.asc(), User.id.asc())
    return list_response(q, users.user_json)


@admin_bp.post('/users')
@with_audit('admin', activity_type='user_created', entity_type='user',
            extract_entity_id=lambda req, body: (body or {}).get('id'), include_body=False)
@require_permissions('ADMIN.USER.MANAGE')
def create_user():
    data = json_body()
    user = users.create_user(data.get('name'), data.get('email'), data.get('password'),
                             data.get('role') or User.ROLE_TECHNICIAN, data.get('phone'))
    return users.user_json(user), 201


@admin_bp.patch('/users/<int:user_id>')
@with_audit('admin', activity_type='user_updated', entity_type='user',
            extract_entity_id=lambda req, body: (body or {}).get('id'), include_body=False)
@require_permissions('ADMIN.USER.MANAGE')
def update_user(user_id: int):
    data = json_body()
    if user_id == current_user_id() and data.get('is_active') is False:
        abort(400, description='Cannot deactivate your own account')
    user = users.update_user(users.get_user(user_id), data)
    return users.user_json(user)
