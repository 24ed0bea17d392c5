from datetime import date
import pytest
from sqlalchemy import select
from repairshop import get_db
from repairshop.models.appointment import Appointment
from repairshop.models.repair_ticket import RepairTicket, TicketService
from repairshop.models.audit import UserActivityLog
from tests.test_utils_seed import ensure_user, ensure_device, ensure_service
from tests.test_lifecycle_helpers import booking_payload, create_resource_and_assert, exercise_appointment_lifecycle

PERMS = ['APPT.READ', 'APPT.MANAGE', 'TICKET.READ', 'TICKET.MANAGE']


@pytest.fixture()
def headers(make_headers):
    u = ensure_user('convert_mgr@example.com')
    return make_headers(u.id, PERMS)


def test_convert_arrived_appointment(client, headers):
    svc_a = ensure_service('Battery Replacement (conv)', base_price_cents=7900)
    svc_b = ensure_service('Port Cleaning (conv)', base_price_cents=2500)
    appt, ticket = exercise_appointment_lifecycle(client, headers, 'convert1@example.com', date(2031, 2, 3),
                                                  service_ids=[svc_a.id, svc_b.id])
    assert ticket['ticket_number'] == f"TPG{ticket['id']:05d}"
    assert ticket['status'] == 'new'
    assert ticket['appointment_id'] == appt['id']
    assert ticket['customer_id'] == appt['customer_id']
    assert ticket['repair_issues'] == ['screen_crack']
    assert ticket['estimated_cost_cents'] == 7900 + 2500
    assert sorted(s['service_id'] for s in ticket['services']) == sorted([svc_a.id, svc_b.id])
    detail = client.get(f"/appointments/{appt['id']}", headers=headers).get_json()
    assert detail['status'] == 'converted'
    assert detail['converted_to_ticket_id'] == ticket['id']
    assert detail['links']['view_ticket'] == f"/orders/{ticket['id']}"
    assert detail['available_actions'] == []


def test_convert_from_confirmed_with_overrides(client, headers):
    device = ensure_device('Galaxy S24 (conv)', brand='Samsung')
    svc = ensure_service('Back Glass (conv)', base_price_cents=9900)
    payload = booking_payload('convert2@example.com', date(2031, 2, 4), device_id=device.id, urgency='emergency')
    appt = create_resource_and_assert(client, '/appointments', payload, headers)
    client.post(f"/appointments/{appt['id']}/confirm", headers=headers)
    resp = client.post(f"/appointments/{appt['id']}/convert", json={
        'selected_services': [svc.id],
        'estimated_cost': '149.50',
        'serial_number': 'SN-123',
        'technician_notes': 'Frame slightly bent',
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    ticket = resp.get_json()
    assert ticket['estimated_cost_cents'] == 14950
    assert ticket['priority'] == 'urgent'
    assert ticket['device_brand'] == 'Samsung'
    assert ticket['serial_number'] == 'SN-123'
    assert [n['content'] for n in ticket['notes']] == ['Frame slightly bent']
    row = get_db().execute(
        select(UserActivityLog).where(UserActivityLog.activity_type == 'appointment_converted',
                                      UserActivityLog.entity_id == str(appt['id']))
    ).scalar_one()
    assert row.details == {'ticket_id': ticket['id'], 'ticket_number': ticket['ticket_number']}


def test_convert_requires_services_and_valid_status(client, headers):
    svc = ensure_service('Diagnostics (conv)', base_price_cents=0)
    appt = create_resource_and_assert(client, '/appointments', booking_payload('convert3@example.com', date(2031, 2, 5)), headers)
    aid = appt['id']
    # scheduled appointments cannot be converted
    resp = client.post(f'/appointments/{aid}/convert', json={'selected_services': [svc.id]}, headers=headers)
    assert resp.status_code == 400
    client.post(f'/appointments/{aid}/confirm', headers=headers)
    resp = client.post(f'/appointments/{aid}/convert', json={'selected_services': []}, headers=headers)
    assert resp.status_code == 400
    assert 'selected_services' in resp.get_json()['error']['detail']
    resp = client.post(f'/appointments/{aid}/convert', json={'selected_services': [svc.id], 'estimated_cost': 'lots'},
                       headers=headers)
    assert resp.status_code == 400
    assert get_db().get(Appointment, aid).status == 'confirmed'


def test_convert_twice_rejected(client, headers):
    svc = ensure_service('Speaker (conv)', base_price_cents=4000)
    appt, ticket = exercise_appointment_lifecycle(client, headers, 'convert4@example.com', date(2031, 2, 6),
                                                  service_ids=[svc.id])
    again = client.post(f"/appointments/{appt['id']}/convert", json={'selected_services': [svc.id]}, headers=headers)
    assert again.status_code == 400
    tickets = get_db().execute(select(RepairTicket).where(RepairTicket.appointment_id == appt['id'])).scalars().all()
    assert [t.id for t in tickets] == [ticket['id']]
    # converted appointments cannot be deleted either
    assert client.delete(f"/appointments/{appt['id']}", headers=headers).status_code == 400


def test_convert_is_atomic(client, headers, monkeypatch):
    svc = ensure_service('Camera (conv)', base_price_cents=5000)
    appt = create_resource_and_assert(client, '/appointments', booking_payload('convert5@example.com', date(2031, 2, 7)), headers)
    client.post(f"/appointments/{appt['id']}/confirm", headers=headers)
    before_tickets = get_db().query(RepairTicket).count()
    before_lines = get_db().query(TicketService).count()

    import repairshop.services.appointments as appt_svc

    class ExplodingNote:
        def __init__(self, *a, **k):
            raise RuntimeError('note insert failed')

    monkeypatch.setattr(appt_svc, 'TicketNote', ExplodingNote)
    resp = client.post(f"/appointments/{appt['id']}/convert",
                       json={'selected_services': [svc.id], 'technician_notes': 'boom'}, headers=headers)
    assert resp.status_code == 500
    # nothing from the failed conversion survives
    assert get_db().query(RepairTicket).count() == before_tickets
    assert get_db().query(TicketService).count() == before_lines
    fresh = get_db().get(Appointment, appt['id'])
    assert fresh.status == 'confirmed'
    assert fresh.converted_to_ticket_id is None


def test_convert_needs_ticket_permission(client, make_headers):
    u = ensure_user('convert_apptonly@example.com')
    appt_only = make_headers(u.id, ['APPT.READ', 'APPT.MANAGE'])
    appt = create_resource_and_assert(client, '/appointments', booking_payload('convert6@example.com', date(2031, 2, 10)), appt_only)
    client.post(f"/appointments/{appt['id']}/confirm", headers=appt_only)
    resp = client.post(f"/appointments/{appt['id']}/convert", json={'selected_services': [1]}, headers=appt_only)
    assert resp.status_code == 403
