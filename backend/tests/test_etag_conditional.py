from datetime import timedelta
from email.utils import format_datetime
from repairshop.utils.timeutil import utcnow
from tests.test_utils_seed import ensure_user, ensure_customer, create_ticket


def _headers(make_headers, email):
    user = ensure_user(email)
    return make_headers(user.id, ['CUSTOMER.READ', 'CUSTOMER.MANAGE', 'TICKET.READ'])


def test_list_etag_round_trip(client, make_headers):
    headers = _headers(make_headers, 'etag_list@example.com')
    ensure_customer('etag_list_customer@example.com', name='Etag Listed')
    first = client.get('/customers?q=etag_list_customer', headers=headers)
    assert first.status_code == 200
    etag = first.headers['ETag']
    assert first.headers.get('Last-Modified')
    assert first.headers.get('X-Last-Modified-ISO', '').endswith('Z')
    again = client.get('/customers?q=etag_list_customer', headers={**headers, 'If-None-Match': f'"{etag}"'})
    assert again.status_code == 304
    assert again.data == b''
    assert again.headers['ETag'] == etag
    # a different page has a different tag
    other = client.get('/customers?q=etag_list_customer&offset=1', headers={**headers, 'If-None-Match': etag})
    assert other.status_code == 200


def test_if_modified_since(client, make_headers):
    headers = _headers(make_headers, 'etag_ims@example.com')
    customer = ensure_customer('etag_ims_customer@example.com')
    ticket = create_ticket(customer)
    future = format_datetime(utcnow() + timedelta(days=1), usegmt=False)
    fresh = client.get(f'/orders/{ticket.id}', headers={**headers, 'If-Modified-Since': future})
    assert fresh.status_code == 304
    past_iso = (utcnow() - timedelta(days=1)).isoformat() + 'Z'
    stale = client.get(f'/orders/{ticket.id}', headers={**headers, 'If-Modified-Since': past_iso})
    assert stale.status_code == 200
    garbage = client.get(f'/orders/{ticket.id}', headers={**headers, 'If-Modified-Since': 'not a date'})
    assert garbage.status_code == 200


def test_if_none_match_wins_over_if_modified_since(client, make_headers):
    headers = _headers(make_headers, 'etag_precedence@example.com')
    customer = ensure_customer('etag_precedence_customer@example.com')
    ticket = create_ticket(customer)
    future = (utcnow() + timedelta(days=1)).isoformat() + 'Z'
    resp = client.get(f'/orders/{ticket.id}', headers={**headers, 'If-None-Match': 'stale-tag',
                                                       'If-Modified-Since': future})
    # a non-matching tag falls through to the date check
    assert resp.status_code == 304
    resp = client.get(f'/orders/{ticket.id}', headers=headers)
    match = client.get(f'/orders/{ticket.id}', headers={**headers, 'If-None-Match': resp.headers['ETag']})
    assert match.status_code == 304


def test_head_requests_have_headers_and_no_body(client, make_headers):
    headers = _headers(make_headers, 'etag_head@example.com')
    customer = ensure_customer('etag_head_customer@example.com')
    ticket = create_ticket(customer)
    listed = client.head('/customers', headers=headers)
    assert listed.status_code == 200
    assert listed.data == b''
    assert listed.headers['ETag'] == client.get('/customers', headers=headers).headers['ETag']
    detail = client.head(f'/orders/{ticket.id}', headers=headers)
    assert detail.status_code == 200
    assert detail.data == b''
    assert detail.headers.get('ETag')
