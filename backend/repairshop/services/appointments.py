"""Appointment lifecycle: booking, slot conflicts, staff actions and conversion to tickets.

Services raise domain errors (NotFound / Conflict / InvalidTransition) or abort(400) for
input problems; route handlers stay thin. Emails are sent only after the owning
transaction commits.
"""
from __future__ import annotations
import logging
from datetime import date, time, datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import abort
from sqlalchemy import select, func

from repairshop import get_db
from repairshop.errors import NotFound, Conflict
from repairshop.models.appointment import Appointment
from repairshop.models.catalog import Device, Service
from repairshop.models.customer import Customer
from repairshop.models.repair_ticket import RepairTicket, TicketService, TicketNote
from repairshop.services import notifications
from repairshop.services.policy import get_active_user
from repairshop.utils.fsm import APPOINTMENT_FSM
from repairshop.utils.timeutil import utcnow, iso
from repairshop.utils.validation import validate_status, optional_int

logger = logging.getLogger(__name__)

OPEN_HOUR = 9
CLOSE_HOUR = 18
SLOT_MINUTES = 30
PATCHABLE_FIELDS = ('assigned_to', 'status', 'notes', 'follow_up_notes')
# No reassignment once the visit is over
LOCKED_ASSIGNMENT_STATUSES = (Appointment.STATUS_CONVERTED, Appointment.STATUS_CANCELLED, Appointment.STATUS_NO_SHOW)


def get_appointment(appointment_id: int) -> Appointment:
    appt = get_db().get(Appointment, appointment_id)
    if appt is None:
        raise NotFound(f'Appointment {appointment_id} not found')
    return appt


def find_or_create_customer(name: Optional[str], email: Optional[str], phone: Optional[str] = None) -> Customer:
    if not email:
        abort(400, description='customer email required')
    session = get_db()
    email_n = email.strip().lower()
    customer = session.execute(select(Customer).where(func.lower(Customer.email) == email_n)).scalar_one_or_none()
    if customer is None:
        if not name:
            abort(400, description='customer name required')
        customer = Customer(name=name.strip(), email=email_n, phone=phone)
        session.add(customer)
        session.flush()
    elif phone and not customer.phone:
        customer.phone = phone
    return customer


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def find_conflict(on: date, at: time, duration: int, exclude_id: Optional[int] = None) -> Optional[Appointment]:
    """First active appointment on the same day whose interval overlaps [at, at + duration)."""
    q = select(Appointment).where(
        Appointment.scheduled_date == on,
        Appointment.status.not_in(Appointment.INACTIVE_STATUSES),
    )
    if exclude_id is not None:
        q = q.where(Appointment.id != exclude_id)
    start = _minutes(at)
    end = start + duration
    for other in get_db().execute(q).scalars():
        o_start = _minutes(other.scheduled_time)
        o_end = o_start + (other.duration_minutes or SLOT_MINUTES)
        if start < o_end and o_start < end:
            return other
    return None


def available_slots(on: date) -> List[Dict[str, Any]]:
    """30-minute slots between opening and closing, flagged unavailable when booked."""
    slots = []
    cursor = datetime.combine(on, time(OPEN_HOUR, 0))
    close = datetime.combine(on, time(CLOSE_HOUR, 0))
    while cursor < close:
        t = cursor.time()
        taken = find_conflict(on, t, SLOT_MINUTES) is not None
        slots.append({'time': t.strftime('%H:%M'), 'available': not taken})
        cursor += timedelta(minutes=SLOT_MINUTES)
    return slots


def _resolve_services(service_ids: List[Any]) -> List[Service]:
    if not service_ids:
        return []
    try:
        ids = [int(s) for s in service_ids]
    except (TypeError, ValueError):
        abort(400, description='service ids must be integers')
    rows = get_db().execute(select(Service).where(Service.id.in_(ids))).scalars().all()
    found = {s.id for s in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        abort(400, description=f'Unknown service ids: {missing}')
    by_id = {s.id: s for s in rows}
    return [by_id[i] for i in ids]


def create_appointment(data: Dict[str, Any], source: str = 'phone') -> Appointment:
    """Validate, check the slot and persist a scheduled appointment. Commits."""
    session = get_db()
    customer_data = data.get('customer') or {}
    if data.get('customer_id'):
        customer = session.get(Customer, optional_int(data['customer_id'], 'customer_id'))
        if customer is None:
            abort(400, description='customer_id unknown')
    else:
        customer = find_or_create_customer(
            customer_data.get('name') or data.get('customer_name'),
            customer_data.get('email') or data.get('customer_email'),
            customer_data.get('phone') or data.get('customer_phone'),
        )
    try:
        on = date.fromisoformat(str(data.get('scheduled_date') or ''))
        at = time.fromisoformat(str(data.get('scheduled_time') or ''))
    except ValueError:
        abort(400, description='scheduled_date (YYYY-MM-DD) and scheduled_time (HH:MM) required')
    duration = optional_int(data.get('duration_minutes'), 'duration_minutes') or SLOT_MINUTES
    if duration <= 0:
        abort(400, description='duration_minutes must be > 0')
    urgency = validate_status(data.get('urgency') or 'scheduled', Appointment.URGENCIES, 'urgency')
    source = validate_status(data.get('source') or source, Appointment.SOURCES, 'source')
    device_id = optional_int(data.get('device_id'), 'device_id')
    if device_id is not None and session.get(Device, device_id) is None:
        abort(400, description='device_id unknown')
    services = _resolve_services(data.get('service_ids') or [])
    assigned_to = optional_int(data.get('assigned_to'), 'assigned_to')
    if assigned_to is not None:
        get_active_user(assigned_to)
    clash = find_conflict(on, at, duration)
    if clash is not None:
        raise Conflict(f'Time slot conflicts with appointment {clash.appointment_number}')
    issues = data.get('issues') or []
    if not isinstance(issues, list):
        abort(400, description='issues must be a list')
    appt = Appointment(
        customer_id=customer.id,
        device_id=device_id,
        scheduled_date=on,
        scheduled_time=at,
        duration_minutes=duration,
        status=Appointment.STATUS_SCHEDULED,
        issues=[str(i) for i in issues],
        service_ids=[s.id for s in services],
        description=data.get('description'),
        urgency=urgency,
        source=source,
        notes=data.get('notes'),
        assigned_to=assigned_to,
        estimated_cost_cents=sum(s.base_price_cents for s in services) or None,
    )
    session.add(appt)
    session.flush()
    appt.appointment_number = f'APT{appt.id:05d}'
    session.commit()
    notifications.notify_appointment_confirmation(appt, customer, _device(appt), is_initial_request=True)
    return appt


def _device(appt) -> Optional[Device]:
    return get_db().get(Device, appt.device_id) if appt.device_id else None


def _customer(appt) -> Customer:
    return get_db().get(Customer, appt.customer_id)


def apply_action(appt: Appointment, action: str, reason: Optional[str] = None) -> Appointment:
    """Run a named staff action (confirm / check_in / cancel / mark_no_show). Commits."""
    session = get_db()
    target = APPOINTMENT_FSM.target_for_action(action, appt.status)
    now = utcnow()
    appt.status = target
    if action == 'confirm':
        appt.confirmation_sent_at = now
    elif action == 'check_in':
        appt.checked_in_at = now
    elif action == 'cancel':
        appt.cancellation_reason = reason
    session.commit()
    if action == 'confirm':
        notifications.notify_appointment_confirmation(appt, _customer(appt), _device(appt))
    elif action == 'cancel':
        notifications.notify_appointment_cancelled(appt, _customer(appt), _device(appt))
    return appt


def update_appointment(appt: Appointment, data: Dict[str, Any]) -> Appointment:
    """PATCH semantics restricted to assignment, status and notes. Commits."""
    session = get_db()
    unknown = sorted(set(data) - set(PATCHABLE_FIELDS))
    if unknown:
        abort(400, description=f'Fields not editable: {unknown}')
    if 'assigned_to' in data:
        if appt.status in LOCKED_ASSIGNMENT_STATUSES:
            abort(400, description=f'Cannot reassign a {appt.status} appointment')
        assignee = optional_int(data['assigned_to'], 'assigned_to')
        if assignee is not None:
            get_active_user(assignee)
        appt.assigned_to = assignee
    if 'notes' in data:
        appt.notes = data['notes']
    if data.get('follow_up_notes'):
        stamp = utcnow().strftime('%Y-%m-%d %H:%M')
        appt.notes = ((appt.notes + '\n') if appt.notes else '') + f'[{stamp}] {data["follow_up_notes"]}'
    if 'status' in data and data['status'] != appt.status:
        target = validate_status(data['status'], Appointment.ALL_STATUSES)
        if target == Appointment.STATUS_CONVERTED:
            abort(400, description='Use the convert action to create a ticket')
        APPOINTMENT_FSM.assert_can_transition(appt.status, target)
        appt.status = target
        if target == Appointment.STATUS_ARRIVED:
            appt.checked_in_at = utcnow()
    session.commit()
    return appt


def convert_to_ticket(appt: Appointment, data: Dict[str, Any], user_id: Optional[int] = None) -> RepairTicket:
    """Create a repair ticket from a confirmed or arrived appointment.

    The ticket insert, its service lines and the appointment update commit together;
    any failure rolls all of them back.
    """
    session = get_db()
    selected = data.get('selected_services')
    if not selected:
        abort(400, description='selected_services must contain at least one service')
    APPOINTMENT_FSM.target_for_action('convert', appt.status)
    services = _resolve_services(selected)
    device = _device(appt)
    estimated = data.get('estimated_cost')
    try:
        estimated_cents = int(round(float(estimated) * 100)) if estimated not in (None, '') else None
    except (TypeError, ValueError):
        abort(400, description='estimated_cost must be a number')
    if estimated_cents is None:
        estimated_cents = sum(s.base_price_cents for s in services)
    try:
        ticket = RepairTicket(
            customer_id=appt.customer_id,
            device_id=appt.device_id,
            device_brand=device.brand if device else None,
            device_model=device.model_name if device else None,
            serial_number=data.get('serial_number'),
            imei=data.get('imei'),
            repair_issues=list(appt.issues or []),
            description=appt.description,
            status=RepairTicket.STATUS_NEW,
            priority='urgent' if appt.urgency == 'emergency' else 'medium',
            estimated_cost_cents=estimated_cents,
            assigned_to=appt.assigned_to,
            appointment_id=appt.id,
        )
        session.add(ticket)
        session.flush()
        ticket.ticket_number = f'TPG{ticket.id:05d}'
        for svc in services:
            session.add(TicketService(ticket_id=ticket.id, service_id=svc.id, quantity=1,
                                      unit_price_cents=svc.base_price_cents))
        if data.get('technician_notes'):
            session.add(TicketNote(ticket_id=ticket.id, user_id=user_id, note_type='internal',
                                   content=data['technician_notes']))
        appt.status = Appointment.STATUS_CONVERTED
        appt.converted_to_ticket_id = ticket.id
        session.commit()
    except Exception:
        session.rollback()
        logger.exception('Conversion of appointment %s failed', appt.id)
        raise
    return ticket


def delete_appointment(appt: Appointment):
    if appt.status == Appointment.STATUS_CONVERTED:
        abort(400, description='Converted appointments cannot be deleted')
    session = get_db()
    session.delete(appt)
    session.commit()


def appointment_json(appt: Appointment, detail: bool = False) -> Dict[str, Any]:
    body = {
        'id': appt.id,
        'appointment_number': appt.appointment_number,
        'customer_id': appt.customer_id,
        'device_id': appt.device_id,
        'scheduled_date': appt.scheduled_date.isoformat(),
        'scheduled_time': appt.scheduled_time.strftime('%H:%M'),
        'duration_minutes': appt.duration_minutes,
        'status': appt.status,
        'issues': appt.issues or [],
        'service_ids': appt.service_ids or [],
        'description': appt.description,
        'urgency': appt.urgency,
        'source': appt.source,
        'notes': appt.notes,
        'assigned_to': appt.assigned_to,
        'estimated_cost_cents': appt.estimated_cost_cents,
        'cancellation_reason': appt.cancellation_reason,
        'confirmation_sent_at': iso(appt.confirmation_sent_at),
        'checked_in_at': iso(appt.checked_in_at),
        'converted_to_ticket_id': appt.converted_to_ticket_id,
    }
    if detail:
        customer = _customer(appt)
        device = _device(appt)
        body['customer'] = {'id': customer.id, 'name': customer.name, 'email': customer.email,
                            'phone': customer.phone} if customer else None
        body['device'] = {'id': device.id, 'name': device.name, 'brand': device.brand} if device else None
        body['available_actions'] = APPOINTMENT_FSM.available_actions(appt.status)
        body['links'] = {}
        if appt.status == Appointment.STATUS_CONVERTED and appt.converted_to_ticket_id:
            body['links']['view_ticket'] = f'/orders/{appt.converted_to_ticket_id}'
    return body


__all__ = [
    'get_appointment', 'find_or_create_customer', 'find_conflict', 'available_slots', 'create_appointment',
    'apply_action', 'update_appointment', 'convert_to_ticket', 'delete_appointment', 'appointment_json',
]
