"""Endpoints for the embeddable booking widget.

Every route authenticates with the X-API-Key header (and the key's Origin allow-list),
is rate limited per client and is recorded in the API request log.
"""
from __future__ import annotations
from flask import Blueprint, request, abort
from sqlalchemy import select, func
from repairshop.decorators.auth import require_api_key
from repairshop.decorators.audit import with_audit
from repairshop.decorators.rate_limit import rate_limit
from repairshop.errors import NotFound
from repairshop.utils.timeutil import iso, parse_date_arg, utcnow
from repairshop.utils.validation import json_body
from repairshop.services import appointments as appt_svc
from repairshop.routes.catalog import device_json, service_json
from repairshop import get_db
from repairshop.models.appointment import Appointment
from repairshop.models.audit import UserActivityLog
from repairshop.models.catalog import Device, Service
from repairshop.models.customer import Customer
from repairshop.models.repair_ticket import RepairTicket

public_bp = Blueprint('public', __name__)

BOOKING_FIELDS = (
    'customer', 'customer_name', 'customer_email', 'customer_phone', 'device_id', 'scheduled_date',
    'scheduled_time', 'service_ids', 'issues', 'description', 'urgency',
)
LOOKUP_TYPES = ('ticket', 'appointment')
LOOKUP_FAILED = {'ticket': 'Invalid ticket number or email', 'appointment': 'Invalid appointment number or email'}


@public_bp.get('/services')
@with_audit('public')
@rate_limit('public')
@require_api_key()
def public_services():
    rows = get_db().execute(
        select(Service).where(Service.is_active.is_(True)).order_by(Service.category.asc(), Service.name.asc())
    ).scalars().all()
    return {'data': [service_json(s) for s in rows]}


@public_bp.get('/devices')
@with_audit('public')
@rate_limit('public')
@require_api_key()
def public_devices():
    q = select(Device).where(Device.is_active.is_(True))
    if brand := request.args.get('brand'):
        q = q.where(func.lower(Device.brand) == brand.lower())
    rows = get_db().execute(q.order_by(Device.brand.asc(), Device.name.asc())).scalars().all()
    return {'data': [device_json(d) for d in rows]}


@public_bp.get('/availability')
@with_audit('public')
@rate_limit('public')
@require_api_key()
def public_availability():
    on = parse_date_arg(request.args.get('date'))
    if on is None:
        abort(400, description='date required (YYYY-MM-DD)')
    if on < utcnow().date():
        abort(400, description='date must not be in the past')
    slots = appt_svc.available_slots(on)
    return {'date': on.isoformat(), 'slot_minutes': appt_svc.SLOT_MINUTES, 'slots': slots}


@public_bp.post('/appointments')
@with_audit('public')
@rate_limit('public')
@require_api_key('form_submission')
def public_create_appointment():
    data = {k: v for k, v in json_body().items() if k in BOOKING_FIELDS}
    appt = appt_svc.create_appointment(data, source='website')
    return {
        'success': True,
        'appointment_number': appt.appointment_number,
        'scheduled_date': appt.scheduled_date.isoformat(),
        'scheduled_time': appt.scheduled_time.strftime('%H:%M'),
        'status': appt.status,
    }, 201


def _ticket_timeline(t: RepairTicket):
    events = [{'event': 'created', 'status': RepairTicket.STATUS_NEW, 'at': iso(t.created_at)}]
    rows = get_db().execute(
        select(UserActivityLog).where(UserActivityLog.activity_type == 'ticket_status_update',
                                      UserActivityLog.entity_type == 'ticket',
                                      UserActivityLog.entity_id == str(t.id))
        .order_by(UserActivityLog.id.asc())
    ).scalars().all()
    for row in rows:
        events.append({'event': 'status_changed', 'status': (row.details or {}).get('after'), 'at': iso(row.created_at)})
    return events


def _appointment_timeline(a: Appointment):
    events = [{'event': 'requested', 'at': iso(a.created_at)}]
    if a.confirmation_sent_at:
        events.append({'event': 'confirmed', 'at': iso(a.confirmation_sent_at)})
    if a.checked_in_at:
        events.append({'event': 'arrived', 'at': iso(a.checked_in_at)})
    if a.status in (Appointment.STATUS_CANCELLED, Appointment.STATUS_NO_SHOW, Appointment.STATUS_CONVERTED):
        events.append({'event': a.status, 'at': iso(a.updated_at)})
    return events


@public_bp.post('/status')
@with_audit('public', include_body=False)
@rate_limit('status_lookup')
@require_api_key()
def public_status_lookup():
    data = json_body()
    kind = data.get('type')
    identifier = str(data.get('identifier') or '').strip().upper()
    email = str(data.get('email') or '').strip().lower()
    if kind not in LOOKUP_TYPES:
        abort(400, description='Invalid lookup type')
    if not identifier or not email:
        abort(400, description='identifier and email required')
    session = get_db()
    if kind == 'ticket':
        model, number_col = RepairTicket, RepairTicket.ticket_number
    else:
        model, number_col = Appointment, Appointment.appointment_number
    row = session.execute(
        select(model).join(Customer, Customer.id == model.customer_id)
        .where(func.upper(number_col) == identifier, func.lower(Customer.email) == email)
    ).scalar_one_or_none()
    # Same message for unknown numbers and wrong emails
    if row is None:
        raise NotFound(LOOKUP_FAILED[kind])
    if kind == 'ticket':
        body = {
            'ticket_number': row.ticket_number,
            'status': row.status,
            'device': ' '.join(p for p in (row.device_brand, row.device_model) if p) or None,
            'repair_issues': row.repair_issues or [],
            'created_at': iso(row.created_at),
            'updated_at': iso(row.updated_at),
            'completed_at': iso(row.completed_at),
        }
        timeline = _ticket_timeline(row)
    else:
        body = {
            'appointment_number': row.appointment_number,
            'status': row.status,
            'scheduled_date': row.scheduled_date.isoformat(),
            'scheduled_time': row.scheduled_time.strftime('%H:%M'),
            'issues': row.issues or [],
        }
        timeline = _appointment_timeline(row)
    return {'success': True, 'type': kind, 'data': body, 'timeline': timeline}
