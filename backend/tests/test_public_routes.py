from datetime import date, timedelta
from sqlalchemy import select
from repairshop import get_db
from repairshop.models.appointment import Appointment
from repairshop.models.customer import Customer
from repairshop.utils.timeutil import utcnow
from tests.test_utils_seed import ensure_api_key, ensure_device, ensure_service, ensure_customer, ensure_user, create_ticket

ORIGIN = 'https://booking.example.com'


def _widget(name, **kw):
    _, raw = ensure_api_key(name, domains=['booking.example.com'], **kw)
    return {'X-API-Key': raw, 'Origin': ORIGIN}


def _booking(email, on, at='11:00', **extra):
    body = {
        'customer_name': 'Web Customer',
        'customer_email': email,
        'customer_phone': '555-0199',
        'scheduled_date': on.isoformat(),
        'scheduled_time': at,
        'issues': ['battery'],
    }
    body.update(extra)
    return body


def test_api_key_required(client):
    assert client.get('/public/services').status_code == 401
    assert client.get('/public/services', headers={'X-API-Key': 'tpg_nope'}).status_code == 401
    headers = _widget('public-origin')
    resp = client.get('/public/services', headers={'X-API-Key': headers['X-API-Key'], 'Origin': 'https://evil.example.org'})
    assert resp.status_code == 403
    assert resp.get_json()['error']['detail'] == 'Domain not whitelisted'
    # subdomains of an allowed domain pass
    ok = client.get('/public/services', headers={'X-API-Key': headers['X-API-Key'], 'Origin': 'https://www.booking.example.com'})
    assert ok.status_code == 200


def test_public_catalog_only_active(client):
    headers = _widget('public-catalog')
    live = ensure_service('Public Screen Fix', base_price_cents=9900)
    retired = ensure_service('Public Retired Service', is_active=False)
    names = [s['name'] for s in client.get('/public/services', headers=headers).get_json()['data']]
    assert live.name in names and retired.name not in names
    ensure_device('Public Phone A', brand='Publicbrand')
    ensure_device('Public Phone B', brand='Publicbrand', is_active=False)
    devices = client.get('/public/devices?brand=PUBLICBRAND', headers=headers).get_json()['data']
    assert [d['name'] for d in devices] == ['Public Phone A']


def test_availability(client, make_headers):
    headers = _widget('public-availability')
    on = date(2031, 3, 3)
    user = ensure_user('public_avail_staff@example.com')
    staff = make_headers(user.id, ['APPT.READ', 'APPT.MANAGE'])
    client.post('/appointments', json={
        'customer': {'name': 'Slot Holder', 'email': 'slot_holder@example.com'},
        'scheduled_date': on.isoformat(), 'scheduled_time': '13:00', 'duration_minutes': 60,
    }, headers=staff)
    body = client.get(f'/public/availability?date={on.isoformat()}', headers=headers).get_json()
    assert body['date'] == on.isoformat()
    assert body['slot_minutes'] == 30
    slots = {s['time']: s['available'] for s in body['slots']}
    assert len(slots) == 18
    assert slots['09:00'] and slots['12:30'] and slots['14:00']
    assert not slots['13:00'] and not slots['13:30']
    assert client.get('/public/availability', headers=headers).status_code == 400
    past = (utcnow().date() - timedelta(days=1)).isoformat()
    assert client.get(f'/public/availability?date={past}', headers=headers).status_code == 400


def test_public_booking(client):
    headers = _widget('public-booking')
    svc = ensure_service('Public Battery Swap', base_price_cents=5900)
    resp = client.post('/public/appointments', json=_booking('Web.Booker@Example.com', date(2031, 3, 4),
                                                              service_ids=[svc.id], source='phone',
                                                              assigned_to=1, notes='internal'), headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['success'] is True
    assert body['status'] == 'scheduled'
    assert body['scheduled_time'] == '11:00'
    appt = get_db().execute(
        select(Appointment).where(Appointment.appointment_number == body['appointment_number'])
    ).scalar_one()
    # widget callers cannot pick source, assignee or staff notes
    assert appt.source == 'website'
    assert appt.assigned_to is None
    assert appt.notes is None
    assert appt.estimated_cost_cents == 5900
    customer = get_db().get(Customer, appt.customer_id)
    assert customer.email == 'web.booker@example.com'
    clash = client.post('/public/appointments', json=_booking('other.booker@example.com', date(2031, 3, 4)), headers=headers)
    assert clash.status_code == 409


def test_booking_reuses_existing_customer(client):
    headers = _widget('public-returning')
    existing = ensure_customer('returning@example.com', name='Returning Rita')
    resp = client.post('/public/appointments', json=_booking('RETURNING@example.com', date(2031, 3, 5)), headers=headers)
    assert resp.status_code == 201
    appt = get_db().execute(
        select(Appointment).where(Appointment.appointment_number == resp.get_json()['appointment_number'])
    ).scalar_one()
    assert appt.customer_id == existing.id


def test_booking_needs_form_permission(client):
    headers = _widget('public-readonly', permissions=['read_only'])
    resp = client.post('/public/appointments', json=_booking('nope@example.com', date(2031, 3, 6)), headers=headers)
    assert resp.status_code == 403
    assert client.get('/public/services', headers=headers).status_code == 200


def test_ticket_status_lookup(client, make_headers):
    headers = _widget('public-status-ticket')
    customer = ensure_customer('lookup_ticket@example.com')
    ticket = create_ticket(customer, device_brand='Apple', device_model='iPhone 13')
    staff_user = ensure_user('lookup_staff@example.com')
    staff = make_headers(staff_user.id, ['TICKET.READ', 'TICKET.CHANGE_STATUS'])
    client.patch(f'/orders/{ticket.id}/status', json={'status': 'in_progress'}, headers=staff)
    resp = client.post('/public/status', json={'type': 'ticket', 'identifier': ticket.ticket_number.lower(),
                                               'email': 'LOOKUP_TICKET@example.com'}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    body = resp.get_json()
    assert body['success'] is True and body['type'] == 'ticket'
    assert body['data']['ticket_number'] == ticket.ticket_number
    assert body['data']['status'] == 'in_progress'
    assert body['data']['device'] == 'Apple iPhone 13'
    # internal fields are not exposed
    assert 'estimated_cost_cents' not in body['data'] and 'assigned_to' not in body['data']
    assert [e['event'] for e in body['timeline']] == ['created', 'status_changed']
    assert body['timeline'][-1]['status'] == 'in_progress'


def test_status_lookup_failures_are_indistinguishable(client):
    headers = _widget('public-status-fail')
    customer = ensure_customer('lookup_owner@example.com')
    ticket = create_ticket(customer)
    wrong_email = client.post('/public/status', json={'type': 'ticket', 'identifier': ticket.ticket_number,
                                                      'email': 'someone_else@example.com'}, headers=headers)
    unknown = client.post('/public/status', json={'type': 'ticket', 'identifier': 'TPG00000',
                                                  'email': 'lookup_owner@example.com'}, headers=headers)
    assert wrong_email.status_code == unknown.status_code == 404
    assert wrong_email.get_json()['error']['detail'] == unknown.get_json()['error']['detail'] == 'Invalid ticket number or email'
    bad_type = client.post('/public/status', json={'type': 'invoice', 'identifier': 'X', 'email': 'a@b.c'}, headers=headers)
    assert bad_type.status_code == 400
    assert bad_type.get_json()['error']['detail'] == 'Invalid lookup type'


def test_appointment_status_lookup(client):
    headers = _widget('public-status-appt')
    booked = client.post('/public/appointments', json=_booking('lookup_appt@example.com', date(2031, 3, 7)),
                         headers=headers).get_json()
    resp = client.post('/public/status', json={'type': 'appointment', 'identifier': booked['appointment_number'],
                                               'email': 'lookup_appt@example.com'}, headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['data']['status'] == 'scheduled'
    assert body['data']['scheduled_date'] == '2031-03-07'
    assert [e['event'] for e in body['timeline']] == ['requested']
    miss = client.post('/public/status', json={'type': 'appointment', 'identifier': booked['appointment_number'],
                                               'email': 'wrong@example.com'}, headers=headers)
    assert miss.get_json()['error']['detail'] == 'Invalid appointment number or email'
