from __future__ import annotations
from flask import Blueprint, request, abort
from repairshop.decorators.auth import require_permissions
from repairshop.decorators.audit import audit_log
from repairshop.utils.listing import list_response, detail_response
from repairshop.utils.sorting import apply_multi_sort
from repairshop.utils.filters import apply_filters, eq
from repairshop.utils.validation import json_body
from repairshop.services.policy import current_user_id, has_permissions
from repairshop.services import tickets as svc
from repairshop.services import timers
from repairshop import get_db
from repairshop.models.customer import Customer
from repairshop.models.repair_ticket import RepairTicket, TicketNote
from repairshop.models.time_entry import TimeEntry

orders_bp = Blueprint('orders', __name__)

SORTABLE = {
    'ticket_number': RepairTicket.ticket_number,
    'status': RepairTicket.status,
    'priority': RepairTicket.priority,
    'created_at': RepairTicket.created_at,
    'updated_at': RepairTicket.updated_at,
    'id': RepairTicket.id,
}

FILTERS = {
    'status': {'op': eq(RepairTicket.status), 'validate': lambda v: v in RepairTicket.ALL_STATUSES},
    'priority': {'op': eq(RepairTicket.priority), 'validate': lambda v: v in RepairTicket.PRIORITIES},
    'assigned_to': {'op': eq(RepairTicket.assigned_to), 'coerce': int},
    'customer_id': {'op': eq(RepairTicket.customer_id), 'coerce': int},
    'customer_name': {'op': lambda q, v: q.join(Customer, Customer.id == RepairTicket.customer_id)
                      .filter(Customer.name.ilike(f"%{v}%"))},
}


def _snapshot(ticket_id):
    t = get_db().get(RepairTicket, ticket_id)
    if not t:
        return {}
    return {'status': t.status, 'assigned_to': t.assigned_to, 'priority': t.priority}


@orders_bp.route('', methods=['GET', 'HEAD'])
@require_permissions('TICKET.READ')
def list_orders():
    q = get_db().query(RepairTicket)
    q = apply_filters(q, FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, RepairTicket.id, default='-created_at,-id')
    return list_response(q, svc.ticket_json)


@orders_bp.post('')
@require_permissions('TICKET.MANAGE')
@audit_log('ticket_create', entity='ticket', entity_id_key='id', meta_keys=['ticket_number', 'status', 'priority'])
def create_order():
    t = svc.create_ticket(json_body(), user_id=current_user_id())
    return svc.ticket_json(t, detail=True), 201


@orders_bp.route('/<int:ticket_id>', methods=['GET', 'HEAD'])
@require_permissions('TICKET.READ')
def get_order(ticket_id: int):
    t = svc.get_ticket(ticket_id)
    return detail_response(svc.ticket_json(t, detail=True), t.updated_at)


@orders_bp.patch('/<int:ticket_id>')
@require_permissions('TICKET.MANAGE')
@audit_log('ticket_update', entity='ticket', entity_id_key='id',
           diff_keys=['priority'], pre_fetch=lambda a, kw: _snapshot(kw.get('ticket_id')))
def update_order(ticket_id: int):
    data = json_body()
    if 'status' in data or 'assigned_to' in data:
        abort(400, description='Use /status or /assign to change status or assignee')
    t = svc.update_ticket(svc.get_ticket(ticket_id), data)
    return svc.ticket_json(t, detail=True)


@orders_bp.route('/<int:ticket_id>/status', methods=['PATCH', 'POST'])
@require_permissions('TICKET.CHANGE_STATUS')
def change_order_status(ticket_id: int):
    # Activity row (before/after) is written inside the service transaction
    data = json_body()
    target = data.get('status')
    if not target:
        abort(400, description='status required')
    t = svc.change_status(svc.get_ticket(ticket_id), target, data.get('reason'), user_id=current_user_id())
    return svc.ticket_json(t, detail=True)


@orders_bp.patch('/<int:ticket_id>/assign')
@require_permissions('TICKET.ASSIGN')
def assign_order(ticket_id: int):
    data = json_body()
    if 'assigned_to' not in data:
        abort(400, description='assigned_to required (null to unassign)')
    t = svc.assign_ticket(svc.get_ticket(ticket_id), data['assigned_to'], user_id=current_user_id())
    return svc.ticket_json(t)


@orders_bp.get('/<int:ticket_id>/notes')
@require_permissions('TICKET.READ')
def list_notes(ticket_id: int):
    svc.get_ticket(ticket_id)
    q = get_db().query(TicketNote).filter(TicketNote.ticket_id == ticket_id).order_by(TicketNote.id.asc())
    return list_response(q, svc.note_json)


@orders_bp.post('/<int:ticket_id>/notes')
@require_permissions('TICKET.READ')
@audit_log('ticket_note_added', entity='ticket', entity_id_arg='ticket_id', meta_keys=['note_type'])
def add_note(ticket_id: int):
    data = json_body()
    note = svc.add_note(svc.get_ticket(ticket_id), data.get('content'), data.get('note_type') or 'internal',
                        user_id=current_user_id())
    return svc.note_json(note), 201


@orders_bp.post('/<int:ticket_id>/timer/start')
@require_permissions('TICKET.CHANGE_STATUS')
def start_timer(ticket_id: int):
    t = timers.start_timer(svc.get_ticket(ticket_id), current_user_id())
    return svc.ticket_json(t)


@orders_bp.post('/<int:ticket_id>/timer/stop')
@require_permissions('TICKET.CHANGE_STATUS')
def stop_timer(ticket_id: int):
    data = json_body()
    t = svc.get_ticket(ticket_id)
    # Only timer admins may stop someone else's timer
    force = bool(data.get('force')) and has_permissions('ADMIN.TIMER.MANAGE')
    entry = timers.stop_timer(t, current_user_id(), data.get('notes'), force=force)
    return {'time_entry': svc.time_entry_json(entry), 'total_time_minutes': t.total_time_minutes}


@orders_bp.get('/<int:ticket_id>/time-entries')
@require_permissions('TICKET.READ')
def list_time_entries(ticket_id: int):
    svc.get_ticket(ticket_id)
    q = get_db().query(TimeEntry).filter(TimeEntry.ticket_id == ticket_id).order_by(TimeEntry.id.asc())
    return list_response(q, svc.time_entry_json)
