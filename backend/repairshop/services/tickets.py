from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from flask import abort
from sqlalchemy import select

from repairshop import get_db
from repairshop.errors import NotFound
from repairshop.models.catalog import Device, Service
from repairshop.models.customer import Customer
from repairshop.models.repair_ticket import RepairTicket, TicketService, TicketNote
from repairshop.models.time_entry import TimeEntry
from repairshop.services import notifications
from repairshop.services.audit import add_activity
from repairshop.services.policy import get_active_user
from repairshop.utils.fsm import TICKET_FSM
from repairshop.utils.timeutil import utcnow, iso
from repairshop.utils.validation import validate_status, dollars_to_cents, optional_int

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('device_brand', 'device_model', 'serial_number', 'imei', 'repair_issues', 'description', 'priority')


def get_ticket(ticket_id: int) -> RepairTicket:
    t = get_db().get(RepairTicket, ticket_id)
    if t is None:
        raise NotFound(f'Ticket {ticket_id} not found')
    return t


def create_ticket(data: Dict[str, Any], user_id: Optional[int] = None) -> RepairTicket:
    """Walk-in / phone order created directly by staff. Commits."""
    from repairshop.services.appointments import find_or_create_customer
    session = get_db()
    if data.get('customer_id'):
        customer = session.get(Customer, optional_int(data['customer_id'], 'customer_id'))
        if customer is None:
            abort(400, description='customer_id unknown')
    else:
        c = data.get('customer') or {}
        customer = find_or_create_customer(c.get('name'), c.get('email'), c.get('phone'))
    device = None
    device_id = optional_int(data.get('device_id'), 'device_id')
    if device_id is not None:
        device = session.get(Device, device_id)
        if device is None:
            abort(400, description='device_id unknown')
    issues = data.get('repair_issues') or []
    if not isinstance(issues, list):
        abort(400, description='repair_issues must be a list')
    assigned_to = optional_int(data.get('assigned_to'), 'assigned_to')
    if assigned_to is not None:
        get_active_user(assigned_to)
    t = RepairTicket(
        customer_id=customer.id,
        device_id=device.id if device else None,
        device_brand=data.get('device_brand') or (device.brand if device else None),
        device_model=data.get('device_model') or (device.model_name if device else None),
        serial_number=data.get('serial_number'),
        imei=data.get('imei'),
        repair_issues=[str(i) for i in issues],
        description=data.get('description'),
        status=RepairTicket.STATUS_NEW,
        priority=validate_status(data.get('priority') or 'medium', RepairTicket.PRIORITIES, 'priority'),
        estimated_cost_cents=dollars_to_cents(data.get('estimated_cost'), 'estimated_cost'),
        assigned_to=assigned_to,
    )
    session.add(t)
    session.flush()
    t.ticket_number = f'TPG{t.id:05d}'
    for sid in data.get('service_ids') or []:
        service_id = optional_int(sid, 'service_ids')
        svc = session.get(Service, service_id) if service_id is not None else None
        if svc is None:
            abort(400, description=f'Unknown service id {sid}')
        session.add(TicketService(ticket_id=t.id, service_id=svc.id, quantity=1, unit_price_cents=svc.base_price_cents))
    add_activity('ticket_created', 'ticket', t.id, {'ticket_number': t.ticket_number}, user_id=user_id)
    session.commit()
    return t


def update_ticket(t: RepairTicket, data: Dict[str, Any]) -> RepairTicket:
    session = get_db()
    unknown = sorted(set(data) - set(EDITABLE_FIELDS) - {'estimated_cost', 'actual_cost'})
    if unknown:
        abort(400, description=f'Fields not editable: {unknown}')
    for key in EDITABLE_FIELDS:
        if key in data:
            val = data[key]
            if key == 'priority':
                val = validate_status(val, RepairTicket.PRIORITIES, 'priority')
            if key == 'repair_issues' and not isinstance(val, list):
                abort(400, description='repair_issues must be a list')
            setattr(t, key, val)
    if 'estimated_cost' in data:
        t.estimated_cost_cents = dollars_to_cents(data['estimated_cost'], 'estimated_cost')
    if 'actual_cost' in data:
        t.actual_cost_cents = dollars_to_cents(data['actual_cost'], 'actual_cost')
    t.updated_at = utcnow()
    session.commit()
    return t


def change_status(t: RepairTicket, target: str, reason: Optional[str] = None, user_id: Optional[int] = None) -> RepairTicket:
    """Validated status write; logs the transition and notifies the customer after commit."""
    session = get_db()
    validate_status(target, RepairTicket.ALL_STATUSES)
    before = t.status
    TICKET_FSM.assert_can_transition(before, target)
    t.status = target
    if target == RepairTicket.STATUS_COMPLETED:
        t.completed_at = utcnow()
    elif before in RepairTicket.CLOSED_STATUSES:
        # reopen
        t.completed_at = None
    t.updated_at = utcnow()
    add_activity('ticket_status_update', 'ticket', t.id,
                 {'before': before, 'after': target, 'reason': reason}, user_id=user_id)
    session.commit()
    customer = session.get(Customer, t.customer_id)
    if customer is not None:
        notifications.notify_ticket_status(t, customer, reason)
    return t


def assign_ticket(t: RepairTicket, assigned_to: Optional[int], user_id: Optional[int] = None) -> RepairTicket:
    session = get_db()
    if t.status in RepairTicket.CLOSED_STATUSES:
        abort(400, description=f'Cannot assign a {t.status} ticket')
    before = t.assigned_to
    assigned_to = optional_int(assigned_to, 'assigned_to')
    if assigned_to is not None:
        get_active_user(assigned_to)
    t.assigned_to = assigned_to
    t.updated_at = utcnow()
    add_activity('ticket_assigned', 'ticket', t.id, {'before': before, 'after': assigned_to}, user_id=user_id)
    session.commit()
    return t


def add_note(t: RepairTicket, content: Optional[str], note_type: str = 'internal', user_id: Optional[int] = None) -> TicketNote:
    if not content or not str(content).strip():
        abort(400, description='content required')
    validate_status(note_type, TicketNote.TYPES, 'note_type')
    session = get_db()
    note = TicketNote(ticket_id=t.id, user_id=user_id, note_type=note_type, content=str(content).strip())
    session.add(note)
    session.commit()
    return note


def note_json(n: TicketNote) -> Dict[str, Any]:
    return {
        'id': n.id,
        'ticket_id': n.ticket_id,
        'user_id': n.user_id,
        'note_type': n.note_type,
        'content': n.content,
        'created_at': iso(n.created_at),
    }


def time_entry_json(e: TimeEntry) -> Dict[str, Any]:
    return {
        'id': e.id,
        'ticket_id': e.ticket_id,
        'user_id': e.user_id,
        'start_time': iso(e.start_time),
        'end_time': iso(e.end_time),
        'duration_minutes': e.duration_minutes,
        'description': e.description,
    }


def ticket_json(t: RepairTicket, detail: bool = False) -> Dict[str, Any]:
    body = {
        'id': t.id,
        'ticket_number': t.ticket_number,
        'customer_id': t.customer_id,
        'device_id': t.device_id,
        'device_brand': t.device_brand,
        'device_model': t.device_model,
        'serial_number': t.serial_number,
        'imei': t.imei,
        'repair_issues': t.repair_issues or [],
        'description': t.description,
        'status': t.status,
        'priority': t.priority,
        'estimated_cost_cents': t.estimated_cost_cents,
        'actual_cost_cents': t.actual_cost_cents,
        'assigned_to': t.assigned_to,
        'appointment_id': t.appointment_id,
        'timer_started_at': iso(t.timer_started_at),
        'timer_user_id': t.timer_user_id,
        'total_time_minutes': t.total_time_minutes,
        'completed_at': iso(t.completed_at),
    }
    if detail:
        session = get_db()
        customer = session.get(Customer, t.customer_id)
        body['customer'] = {'id': customer.id, 'name': customer.name, 'email': customer.email,
                            'phone': customer.phone} if customer else None
        body['services'] = [
            {'id': s.id, 'service_id': s.service_id, 'quantity': s.quantity, 'unit_price_cents': s.unit_price_cents}
            for s in t.services
        ]
        entries = session.execute(
            select(TimeEntry).where(TimeEntry.ticket_id == t.id).order_by(TimeEntry.id.asc())
        ).scalars().all()
        body['time_entries'] = [time_entry_json(e) for e in entries]
        body['notes'] = [note_json(n) for n in t.notes]
        body['available_actions'] = TICKET_FSM.available_actions(t.status)
    return body


__all__ = [
    'get_ticket', 'create_ticket', 'update_ticket', 'change_status', 'assign_ticket', 'add_note',
    'ticket_json', 'note_json', 'time_entry_json',
]
