from __future__ import annotations
from flask import Blueprint, request, abort, current_app
from sqlalchemy import select, func, or_
from repairshop.decorators.auth import require_permissions
from repairshop.decorators.audit import audit_log, with_audit
from repairshop.decorators.rate_limit import rate_limit
from repairshop.errors import NotFound, Conflict
from repairshop.utils.listing import list_response, detail_response
from repairshop.utils.sorting import apply_multi_sort
from repairshop.utils.filters import apply_filters, eq
from repairshop.utils.validation import json_body, require_fields, optional_int, dollars_to_cents
from repairshop.services.techspecs import TechSpecsClient
from repairshop.services.device_sync import sync_devices
from repairshop import get_db
from repairshop.models.catalog import Device, Service

catalog_bp = Blueprint('catalog', __name__)

DEVICE_FIELDS = ('brand', 'model_name', 'name', 'external_id', 'release_date', 'image_url', 'device_type',
                 'specifications', 'is_active')
SERVICE_FIELDS = ('name', 'category', 'base_price', 'base_price_cents', 'estimated_minutes', 'is_active')

DEVICE_SORT = {
    'brand': Device.brand,
    'name': Device.name,
    'release_date': Device.release_date,
    'updated_at': Device.updated_at,
    'id': Device.id,
}
SERVICE_SORT = {
    'name': Service.name,
    'category': Service.category,
    'base_price_cents': Service.base_price_cents,
    'updated_at': Service.updated_at,
    'id': Service.id,
}


def _bool_arg(v):
    if v.lower() in ('1', 'true', 'yes'):
        return True
    if v.lower() in ('0', 'false', 'no'):
        return False
    raise ValueError(v)


DEVICE_FILTERS = {
    'brand': {'op': lambda q, v: q.filter(func.lower(Device.brand) == v.lower())},
    'device_type': {'op': eq(Device.device_type)},
    'is_active': {'op': eq(Device.is_active), 'coerce': _bool_arg},
}
SERVICE_FILTERS = {
    'category': {'op': eq(Service.category)},
    'is_active': {'op': eq(Service.is_active), 'coerce': _bool_arg},
}


def device_json(d: Device):
    return {
        'id': d.id,
        'brand': d.brand,
        'model_name': d.model_name,
        'name': d.name,
        'external_id': d.external_id,
        'release_date': d.release_date,
        'image_url': d.image_url,
        'device_type': d.device_type,
        'specifications': d.specifications or {},
        'is_active': d.is_active,
    }


def service_json(s: Service):
    return {
        'id': s.id,
        'name': s.name,
        'category': s.category,
        'base_price_cents': s.base_price_cents,
        'estimated_minutes': s.estimated_minutes,
        'is_active': s.is_active,
    }


def _get(model, obj_id: int, label: str):
    obj = get_db().get(model, obj_id)
    if obj is None:
        raise NotFound(f'{label} {obj_id} not found')
    return obj


def _check_unknown(data: dict, allowed):
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        abort(400, description=f'Fields not editable: {unknown}')


def _apply_device_fields(d: Device, data: dict):
    session = get_db()
    for key in ('brand', 'model_name', 'name'):
        if key in data:
            if not data[key]:
                abort(400, description=f'{key} required')
            setattr(d, key, str(data[key]).strip())
    if 'external_id' in data:
        ext = str(data['external_id']) if data['external_id'] not in (None, '') else None
        if ext:
            q = select(Device.id).where(Device.external_id == ext)
            if d.id is not None:
                q = q.where(Device.id != d.id)
            if session.execute(q).first():
                raise Conflict(f'Device with external_id {ext} already exists')
        d.external_id = ext
    for key in ('release_date', 'image_url'):
        if key in data:
            setattr(d, key, data[key] or None)
    if 'device_type' in data:
        d.device_type = data['device_type'] or 'smartphone'
    if 'specifications' in data:
        if not isinstance(data['specifications'], dict):
            abort(400, description='specifications must be an object')
        d.specifications = data['specifications']
    if 'is_active' in data:
        d.is_active = bool(data['is_active'])


def _apply_service_fields(s: Service, data: dict):
    if 'name' in data:
        if not data['name']:
            abort(400, description='name required')
        name = str(data['name']).strip()
        q = select(Service.id).where(func.lower(Service.name) == name.lower())
        if s.id is not None:
            q = q.where(Service.id != s.id)
        if get_db().execute(q).first():
            raise Conflict(f'Service {name!r} already exists')
        s.name = name
    if 'category' in data:
        s.category = data['category'] or 'general'
    if 'base_price' in data:
        s.base_price_cents = dollars_to_cents(data['base_price'], 'base_price') or 0
    elif 'base_price_cents' in data:
        cents = optional_int(data['base_price_cents'], 'base_price_cents') or 0
        if cents < 0:
            abort(400, description='base_price_cents must be >= 0')
        s.base_price_cents = cents
    if 'estimated_minutes' in data:
        s.estimated_minutes = optional_int(data['estimated_minutes'], 'estimated_minutes')
    if 'is_active' in data:
        s.is_active = bool(data['is_active'])


@catalog_bp.route('/devices', methods=['GET', 'HEAD'])
@require_permissions('DEVICE.READ')
@rate_limit('search')
def list_devices():
    q = get_db().query(Device)
    if term := (request.args.get('q') or '').strip():
        like = f'%{term}%'
        q = q.filter(or_(Device.name.ilike(like), Device.brand.ilike(like), Device.model_name.ilike(like)))
    q = apply_filters(q, DEVICE_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), DEVICE_SORT, Device.id, default='brand,name')
    return list_response(q, device_json)


@catalog_bp.route('/devices/<int:device_id>', methods=['GET', 'HEAD'])
@require_permissions('DEVICE.READ')
def get_device(device_id: int):
    d = _get(Device, device_id, 'Device')
    return detail_response(device_json(d), d.updated_at)


@catalog_bp.route('/services', methods=['GET', 'HEAD'])
@require_permissions('DEVICE.READ')
def list_services():
    q = get_db().query(Service)
    q = apply_filters(q, SERVICE_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SERVICE_SORT, Service.id, default='category,name')
    return list_response(q, service_json)


@catalog_bp.post('/admin/devices')
@require_permissions('DEVICE.MANAGE')
@audit_log('device_created', entity='device', entity_id_key='id', meta_keys=['brand', 'name'])
def create_device():
    data = json_body()
    _check_unknown(data, DEVICE_FIELDS)
    require_fields(data, 'brand', 'name')
    data.setdefault('model_name', data['name'])
    d = Device(is_active=True, device_type='smartphone', specifications={})
    _apply_device_fields(d, data)
    session = get_db()
    session.add(d)
    session.commit()
    return device_json(d), 201


@catalog_bp.patch('/admin/devices/<int:device_id>')
@require_permissions('DEVICE.MANAGE')
@audit_log('device_updated', entity='device', entity_id_key='id', diff_keys=['name', 'is_active', 'image_url'],
           pre_fetch=lambda a, kw: device_json(d) if (d := get_db().get(Device, kw.get('device_id'))) else {})
def update_device(device_id: int):
    data = json_body()
    _check_unknown(data, DEVICE_FIELDS)
    d = _get(Device, device_id, 'Device')
    _apply_device_fields(d, data)
    get_db().commit()
    return device_json(d)


@catalog_bp.delete('/admin/devices/<int:device_id>')
@require_permissions('DEVICE.MANAGE')
@audit_log('device_deactivated', entity='device', entity_id_arg='device_id')
def delete_device(device_id: int):
    # Soft delete; appointments and tickets keep their device reference
    d = _get(Device, device_id, 'Device')
    d.is_active = False
    get_db().commit()
    return {'status': 'deactivated', 'id': device_id}


@catalog_bp.post('/admin/devices/sync')
@with_audit('admin', activity_type='device_sync', entity_type='device')
@require_permissions('DEVICE.MANAGE')
@rate_limit('admin')
def sync_catalog():
    data = json_body()
    limit = optional_int(data.get('limit'), 'limit') or 10
    if not 1 <= limit <= 50:
        abort(400, description='limit must be between 1 and 50')
    client = TechSpecsClient.from_config(current_app.config)
    return sync_devices(client, brand=data.get('brand'), limit=limit, auto_import=bool(data.get('auto_import')))


@catalog_bp.post('/admin/services')
@require_permissions('DEVICE.MANAGE')
@audit_log('service_created', entity='service', entity_id_key='id', meta_keys=['name', 'base_price_cents'])
def create_service():
    data = json_body()
    _check_unknown(data, SERVICE_FIELDS)
    require_fields(data, 'name')
    s = Service(category='general', base_price_cents=0, is_active=True)
    _apply_service_fields(s, data)
    session = get_db()
    session.add(s)
    session.commit()
    return service_json(s), 201


@catalog_bp.patch('/admin/services/<int:service_id>')
@require_permissions('DEVICE.MANAGE')
@audit_log('service_updated', entity='service', entity_id_key='id', diff_keys=['name', 'base_price_cents', 'is_active'],
           pre_fetch=lambda a, kw: service_json(s) if (s := get_db().get(Service, kw.get('service_id'))) else {})
def update_service(service_id: int):
    data = json_body()
    _check_unknown(data, SERVICE_FIELDS)
    s = _get(Service, service_id, 'Service')
    _apply_service_fields(s, data)
    get_db().commit()
    return service_json(s)


@catalog_bp.delete('/admin/services/<int:service_id>')
@require_permissions('DEVICE.MANAGE')
@audit_log('service_deactivated', entity='service', entity_id_arg='service_id')
def delete_service(service_id: int):
    s = _get(Service, service_id, 'Service')
    s.is_active = False
    get_db().commit()
    return {'status': 'deactivated', 'id': service_id}
