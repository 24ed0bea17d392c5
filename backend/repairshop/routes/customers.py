from __future__ import annotations
from flask import Blueprint, request, abort
from sqlalchemy import select, func, or_
from repairshop.decorators.auth import require_permissions
from repairshop.decorators.audit import audit_log
from repairshop.errors import NotFound, Conflict
from repairshop.utils.listing import list_response, detail_response
from repairshop.utils.sorting import apply_multi_sort
from repairshop.utils.validation import json_body, require_fields
from repairshop.utils.timeutil import iso
from repairshop.services.appointments import appointment_json
from repairshop.services.tickets import ticket_json
from repairshop import get_db
from repairshop.models.customer import Customer
from repairshop.models.appointment import Appointment
from repairshop.models.repair_ticket import RepairTicket

customers_bp = Blueprint('customers', __name__)

EDITABLE = ('name', 'email', 'phone', 'notes')

SORTABLE = {
    'name': Customer.name,
    'email': Customer.email,
    'created_at': Customer.created_at,
    'updated_at': Customer.updated_at,
    'id': Customer.id,
}


def _customer_json(c: Customer):
    return {
        'id': c.id,
        'name': c.name,
        'email': c.email,
        'phone': c.phone,
        'notes': c.notes,
        'created_at': iso(c.created_at),
    }


def _get_customer(customer_id: int) -> Customer:
    c = get_db().get(Customer, customer_id)
    if c is None:
        raise NotFound(f'Customer {customer_id} not found')
    return c


def _snapshot(customer_id):
    c = get_db().get(Customer, customer_id)
    return _customer_json(c) if c else {}


def _assert_email_free(email: str, exclude_id=None):
    q = select(Customer.id).where(func.lower(Customer.email) == email)
    if exclude_id is not None:
        q = q.where(Customer.id != exclude_id)
    if get_db().execute(q).first():
        raise Conflict('A customer with this email already exists')


@customers_bp.route('', methods=['GET', 'HEAD'])
@require_permissions('CUSTOMER.READ')
def list_customers():
    q = get_db().query(Customer)
    if term := (request.args.get('q') or '').strip():
        like = f'%{term}%'
        q = q.filter(or_(Customer.name.ilike(like), Customer.email.ilike(like), Customer.phone.ilike(like)))
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, Customer.id, default='name')
    return list_response(q, _customer_json)


@customers_bp.post('')
@require_permissions('CUSTOMER.MANAGE')
@audit_log('customer_created', entity='customer', entity_id_key='id', meta_keys=['email'])
def create_customer():
    data = json_body()
    require_fields(data, 'name', 'email')
    email = str(data['email']).strip().lower()
    _assert_email_free(email)
    session = get_db()
    c = Customer(name=str(data['name']).strip(), email=email, phone=data.get('phone'), notes=data.get('notes'))
    session.add(c)
    session.commit()
    return _customer_json(c), 201


@customers_bp.route('/<int:customer_id>', methods=['GET', 'HEAD'])
@require_permissions('CUSTOMER.READ')
def get_customer(customer_id: int):
    session = get_db()
    c = _get_customer(customer_id)
    appts = session.execute(
        select(Appointment).where(Appointment.customer_id == c.id)
        .order_by(Appointment.scheduled_date.desc(), Appointment.scheduled_time.desc())
    ).scalars().all()
    tickets = session.execute(
        select(RepairTicket).where(RepairTicket.customer_id == c.id).order_by(RepairTicket.id.desc())
    ).scalars().all()
    body = _customer_json(c)
    body['appointments'] = [appointment_json(a) for a in appts]
    body['tickets'] = [ticket_json(t) for t in tickets]
    stamps = [c.updated_at] + [a.updated_at for a in appts] + [t.updated_at for t in tickets]
    return detail_response(body, max(s for s in stamps if s is not None))


@customers_bp.patch('/<int:customer_id>')
@require_permissions('CUSTOMER.MANAGE')
@audit_log('customer_updated', entity='customer', entity_id_key='id', diff_keys=['name', 'email', 'phone'],
           pre_fetch=lambda a, kw: _snapshot(kw.get('customer_id')))
def update_customer(customer_id: int):
    data = json_body()
    unknown = sorted(set(data) - set(EDITABLE))
    if unknown:
        abort(400, description=f'Fields not editable: {unknown}')
    c = _get_customer(customer_id)
    if 'name' in data:
        if not data['name']:
            abort(400, description='name required')
        c.name = str(data['name']).strip()
    if 'email' in data:
        if not data['email']:
            abort(400, description='email required')
        email = str(data['email']).strip().lower()
        _assert_email_free(email, exclude_id=c.id)
        c.email = email
    if 'phone' in data:
        c.phone = data['phone']
    if 'notes' in data:
        c.notes = data['notes']
    get_db().commit()
    return _customer_json(c)
