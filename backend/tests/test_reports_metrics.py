from sqlalchemy import select, func
from repairshop import get_db
from repairshop.models.appointment import Appointment
from repairshop.models.repair_ticket import RepairTicket
from repairshop.utils.timeutil import utcnow
from tests.test_utils_seed import ensure_user, ensure_customer, create_ticket


def _count(model):
    return get_db().execute(select(func.count(model.id))).scalar_one()


def test_metrics_counts_match_tables(client, make_headers):
    user = ensure_user('reports_reader@example.com', role='manager')
    headers = make_headers(user.id, ['RPT.READ'])
    customer = ensure_customer('reports_customer@example.com')
    create_ticket(customer, status='in_progress', estimated_cost_cents=10000)
    create_ticket(customer, status='completed', estimated_cost_cents=5000, actual_cost_cents=5500)
    resp = client.get('/reports/metrics', headers=headers)
    assert resp.status_code == 200
    rows = resp.get_json()['data']
    assert {r['domain'] for r in rows} <= {'Appointment', 'RepairTicket'}
    assert sum(r['count'] for r in rows if r['domain'] == 'RepairTicket') == _count(RepairTicket)
    assert sum(r['count'] for r in rows if r['domain'] == 'Appointment') == _count(Appointment)
    assert rows == sorted(rows, key=lambda r: (r['domain'], r['status']))
    # amounts only on request
    assert all('estimated_cost_cents' not in r for r in rows)


def test_metrics_financial_totals(client, make_headers):
    user = ensure_user('reports_finance@example.com', role='manager')
    headers = make_headers(user.id, ['RPT.READ'])
    customer = ensure_customer('reports_finance_customer@example.com')
    create_ticket(customer, status='delivered', estimated_cost_cents=7000, actual_cost_cents=6500)
    rows = client.get('/reports/metrics?include_financial=true', headers=headers).get_json()['data']
    tickets = [r for r in rows if r['domain'] == 'RepairTicket']
    expected = get_db().execute(select(func.coalesce(func.sum(RepairTicket.actual_cost_cents), 0))).scalar_one()
    assert sum(r['actual_cost_cents'] for r in tickets) == expected
    delivered = next(r for r in tickets if r['status'] == 'delivered')
    assert delivered['estimated_cost_cents'] >= 7000


def test_metrics_date_range(client, make_headers):
    user = ensure_user('reports_range@example.com', role='manager')
    headers = make_headers(user.id, ['RPT.READ'])
    future = client.get('/reports/metrics?start_date=2099-01-01', headers=headers).get_json()
    assert future['data'] == []
    assert future['pagination']['total'] == 0
    today = utcnow().date().isoformat()
    # end_date is inclusive of the whole day
    same_day = client.get(f'/reports/metrics?start_date={today}&end_date={today}', headers=headers).get_json()
    assert same_day['pagination']['total'] > 0
    bad = client.get('/reports/metrics?start_date=2031-02-02&end_date=2031-02-01', headers=headers)
    assert bad.status_code == 400
    assert bad.get_json()['error']['detail'] == 'start_date cannot be after end_date'
    assert client.get('/reports/metrics?start_date=02/01/2031', headers=headers).status_code == 400


def test_technician_report(client, make_headers):
    manager = ensure_user('reports_tech_manager@example.com', role='manager')
    headers = make_headers(manager.id, ['RPT.READ'])
    tech = ensure_user('reports_tech@example.com', name='Reporting Tech')
    customer = ensure_customer('reports_tech_customer@example.com')
    create_ticket(customer, status='completed', assigned_to=tech.id, completed_at=utcnow())
    create_ticket(customer, status='completed', assigned_to=tech.id, completed_at=utcnow())
    create_ticket(customer, status='in_progress', assigned_to=tech.id)
    resp = client.get('/reports/technicians?limit=200', headers=headers)
    assert resp.status_code == 200
    row = next(r for r in resp.get_json()['data'] if r['user_id'] == tech.id)
    assert row == {
        'user_id': tech.id,
        'name': 'Reporting Tech',
        'role': 'technician',
        'completed_tickets': 2,
        'open_tickets': 1,
        'total_minutes': 0,
    }
    assert client.get('/reports/technicians', headers=make_headers(tech.id, ['TICKET.READ'])).status_code == 403
