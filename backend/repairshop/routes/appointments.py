from __future__ import annotations
from flask import Blueprint, request
from repairshop.decorators.auth import require_permissions
from repairshop.decorators.audit import audit_log
from repairshop.utils.listing import list_response, detail_response
from repairshop.utils.sorting import apply_multi_sort
from repairshop.utils.filters import apply_filters, eq
from repairshop.utils.timeutil import parse_date_arg
from repairshop.utils.validation import json_body
from repairshop.services.policy import current_user_id
from repairshop.services import appointments as svc
from repairshop.services.tickets import ticket_json
from repairshop import get_db
from repairshop.models.appointment import Appointment

appt_bp = Blueprint('appointments', __name__)

SORTABLE = {
    'scheduled_date': Appointment.scheduled_date,
    'scheduled_time': Appointment.scheduled_time,
    'status': Appointment.status,
    'created_at': Appointment.created_at,
    'updated_at': Appointment.updated_at,
    'id': Appointment.id,
}

FILTERS = {
    'status': {'op': eq(Appointment.status), 'validate': lambda v: v in Appointment.ALL_STATUSES},
    'date': {'op': eq(Appointment.scheduled_date), 'coerce': lambda v: parse_date_arg(v)},
    'customer_id': {'op': eq(Appointment.customer_id), 'coerce': int},
    'assigned_to': {'op': eq(Appointment.assigned_to), 'coerce': int},
}


def _snapshot(appointment_id):
    appt = get_db().get(Appointment, appointment_id)
    if not appt:
        return {}
    return {'status': appt.status, 'assigned_to': appt.assigned_to, 'notes': appt.notes}


@appt_bp.route('', methods=['GET', 'HEAD'])
@require_permissions('APPT.READ')
def list_appointments():
    q = get_db().query(Appointment)
    q = apply_filters(q, FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, Appointment.id, default='scheduled_date,scheduled_time')
    return list_response(q, svc.appointment_json)


@appt_bp.post('')
@require_permissions('APPT.MANAGE')
@audit_log('appointment_created', entity='appointment', entity_id_key='id', meta_keys=['appointment_number', 'source'])
def create_appointment():
    appt = svc.create_appointment(json_body(), source='phone')
    return svc.appointment_json(appt, detail=True), 201


@appt_bp.route('/<int:appointment_id>', methods=['GET', 'HEAD'])
@require_permissions('APPT.READ')
def get_appointment(appointment_id: int):
    appt = svc.get_appointment(appointment_id)
    return detail_response(svc.appointment_json(appt, detail=True), appt.updated_at)


@appt_bp.patch('/<int:appointment_id>')
@require_permissions('APPT.MANAGE')
@audit_log('appointment_updated', entity='appointment', entity_id_key='id',
           diff_keys=['status', 'assigned_to', 'notes'], pre_fetch=lambda a, kw: _snapshot(kw.get('appointment_id')))
def update_appointment(appointment_id: int):
    appt = svc.update_appointment(svc.get_appointment(appointment_id), json_body())
    return svc.appointment_json(appt, detail=True)


def _action(appointment_id: int, action: str, reason=None):
    appt = svc.apply_action(svc.get_appointment(appointment_id), action, reason)
    return svc.appointment_json(appt, detail=True)


@appt_bp.post('/<int:appointment_id>/confirm')
@require_permissions('APPT.MANAGE')
@audit_log('appointment_confirmed', entity='appointment', entity_id_key='id',
           diff_keys=['status'], pre_fetch=lambda a, kw: _snapshot(kw.get('appointment_id')))
def confirm_appointment(appointment_id: int):
    return _action(appointment_id, 'confirm')


@appt_bp.post('/<int:appointment_id>/check-in')
@require_permissions('APPT.MANAGE')
@audit_log('appointment_checked_in', entity='appointment', entity_id_key='id',
           diff_keys=['status'], pre_fetch=lambda a, kw: _snapshot(kw.get('appointment_id')))
def check_in_appointment(appointment_id: int):
    return _action(appointment_id, 'check_in')


@appt_bp.post('/<int:appointment_id>/cancel')
@require_permissions('APPT.MANAGE')
@audit_log('appointment_cancelled', entity='appointment', entity_id_key='id', meta_keys=['cancellation_reason'],
           diff_keys=['status'], pre_fetch=lambda a, kw: _snapshot(kw.get('appointment_id')))
def cancel_appointment(appointment_id: int):
    return _action(appointment_id, 'cancel', json_body().get('reason'))


@appt_bp.post('/<int:appointment_id>/no-show')
@require_permissions('APPT.MANAGE')
@audit_log('appointment_no_show', entity='appointment', entity_id_key='id',
           diff_keys=['status'], pre_fetch=lambda a, kw: _snapshot(kw.get('appointment_id')))
def no_show_appointment(appointment_id: int):
    return _action(appointment_id, 'mark_no_show')


@appt_bp.post('/<int:appointment_id>/convert')
@require_permissions('APPT.MANAGE', 'TICKET.MANAGE')
@audit_log('appointment_converted', entity='appointment', entity_id_arg='appointment_id',
           meta_builder=lambda data, rv, a, kw: {'ticket_id': data.get('id'), 'ticket_number': data.get('ticket_number')})
def convert_appointment(appointment_id: int):
    appt = svc.get_appointment(appointment_id)
    ticket = svc.convert_to_ticket(appt, json_body(), user_id=current_user_id())
    return ticket_json(ticket, detail=True), 201


@appt_bp.delete('/<int:appointment_id>')
@require_permissions('APPT.MANAGE')
@audit_log('appointment_deleted', entity='appointment', entity_id_arg='appointment_id')
def delete_appointment(appointment_id: int):
    svc.delete_appointment(svc.get_appointment(appointment_id))
    return {'status': 'deleted', 'id': appointment_id}
