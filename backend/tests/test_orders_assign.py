from sqlalchemy import select
from repairshop import get_db
from repairshop.models.audit import UserActivityLog
from tests.test_utils_seed import ensure_user, ensure_customer, create_ticket

PERMS = ['TICKET.READ', 'TICKET.ASSIGN']


def test_assign_and_unassign(client, make_headers):
    mgr = ensure_user('assign_mgr@example.com', role='manager')
    tech = ensure_user('assign_tech@example.com')
    headers = make_headers(mgr.id, PERMS)
    ticket = create_ticket(ensure_customer('assign_cust@example.com'))
    resp = client.patch(f'/orders/{ticket.id}/assign', json={'assigned_to': tech.id}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['assigned_to'] == tech.id
    mine = client.get(f'/orders?assigned_to={tech.id}', headers=headers).get_json()
    assert ticket.id in [t['id'] for t in mine['data']]
    resp = client.patch(f'/orders/{ticket.id}/assign', json={'assigned_to': None}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['assigned_to'] is None
    rows = get_db().execute(
        select(UserActivityLog).where(UserActivityLog.activity_type == 'ticket_assigned',
                                      UserActivityLog.entity_id == str(ticket.id)).order_by(UserActivityLog.id)
    ).scalars().all()
    assert [(r.details['before'], r.details['after']) for r in rows] == [(None, tech.id), (tech.id, None)]
    assert all(r.user_id == mgr.id for r in rows)


def test_assign_validation(client, make_headers):
    mgr = ensure_user('assign_mgr2@example.com', role='manager')
    gone = ensure_user('assign_gone@example.com', is_active=False)
    headers = make_headers(mgr.id, PERMS)
    ticket = create_ticket(ensure_customer('assign_cust2@example.com'))
    # key must be present (null unassigns)
    assert client.patch(f'/orders/{ticket.id}/assign', json={}, headers=headers).status_code == 400
    assert client.patch(f'/orders/{ticket.id}/assign', json={'assigned_to': gone.id}, headers=headers).status_code == 400
    assert client.patch(f'/orders/{ticket.id}/assign', json={'assigned_to': 99999999}, headers=headers).status_code == 400
    assert client.patch('/orders/99999999/assign', json={'assigned_to': None}, headers=headers).status_code == 404


def test_closed_ticket_cannot_be_assigned(client, make_headers):
    mgr = ensure_user('assign_mgr3@example.com', role='manager')
    tech = ensure_user('assign_tech3@example.com')
    headers = make_headers(mgr.id, PERMS)
    ticket = create_ticket(ensure_customer('assign_cust3@example.com'), status='completed')
    resp = client.patch(f'/orders/{ticket.id}/assign', json={'assigned_to': tech.id}, headers=headers)
    assert resp.status_code == 400
    assert 'completed' in resp.get_json()['error']['detail']


def test_assign_requires_permission(client, make_headers):
    tech = ensure_user('assign_self@example.com')
    headers = make_headers(tech.id, ['TICKET.READ', 'TICKET.CHANGE_STATUS'])
    ticket = create_ticket(ensure_customer('assign_cust4@example.com'))
    resp = client.patch(f'/orders/{ticket.id}/assign', json={'assigned_to': tech.id}, headers=headers)
    assert resp.status_code == 403


def test_assign_rejects_non_integer_user(client, make_headers):
    mgr = ensure_user('assign_bad_int_mgr@example.com', role='manager')
    ticket = create_ticket(ensure_customer('assign_bad_int_cust@example.com'))
    resp = client.patch(f'/orders/{ticket.id}/assign', json={'assigned_to': 'abc'}, headers=make_headers(mgr.id, PERMS))
    assert resp.status_code == 400
    assert resp.get_json()['error']['detail'] == 'assigned_to must be an integer'
