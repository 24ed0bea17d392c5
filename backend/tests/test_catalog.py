from repairshop import get_db
from repairshop.models.catalog import Device, Service
from tests.test_utils_seed import ensure_user, ensure_device, ensure_service

READ = ['DEVICE.READ']
MANAGE = ['DEVICE.READ', 'DEVICE.MANAGE']


def test_list_devices_filters(client, make_headers):
    user = ensure_user('catalog_reader@example.com')
    headers = make_headers(user.id, READ)
    ensure_device('Catalog Zeta', brand='Catalogbrand')
    ensure_device('Catalog Alpha', brand='Catalogbrand')
    ensure_device('Catalog Retired', brand='Catalogbrand', is_active=False)
    body = client.get('/devices?brand=catalogbrand&is_active=true', headers=headers).get_json()
    assert [d['name'] for d in body['data']] == ['Catalog Alpha', 'Catalog Zeta']
    searched = client.get('/devices?q=retired', headers=headers).get_json()
    assert 'Catalog Retired' in [d['name'] for d in searched['data']]
    assert client.get('/devices?is_active=maybe', headers=headers).status_code == 400
    d = ensure_device('Catalog Detail', brand='Catalogbrand')
    detail = client.get(f'/devices/{d.id}', headers=headers)
    assert detail.status_code == 200
    assert detail.get_json()['brand'] == 'Catalogbrand'
    assert client.get('/devices/99999999', headers=headers).status_code == 404


def test_list_services_by_category(client, make_headers):
    user = ensure_user('catalog_services@example.com')
    headers = make_headers(user.id, READ)
    ensure_service('Catalog Water Damage', base_price_cents=15000, category='catalog_liquid')
    ensure_service('Catalog Corrosion Clean', base_price_cents=8000, category='catalog_liquid')
    body = client.get('/services?category=catalog_liquid', headers=headers).get_json()
    assert [s['name'] for s in body['data']] == ['Catalog Corrosion Clean', 'Catalog Water Damage']
    by_price = client.get('/services?category=catalog_liquid&sort=-base_price_cents', headers=headers).get_json()
    assert by_price['data'][0]['base_price_cents'] == 15000


def test_admin_creates_device(client, make_headers):
    user = ensure_user('catalog_admin@example.com', role='manager')
    headers = make_headers(user.id, MANAGE)
    resp = client.post('/admin/devices', json={'brand': 'Samsung', 'name': 'Galaxy Catalog 1',
                                               'external_id': 'cat-ext-1', 'release_date': '2024-02-01'},
                       headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['model_name'] == 'Galaxy Catalog 1'
    assert body['device_type'] == 'smartphone'
    assert body['is_active'] is True
    dup = client.post('/admin/devices', json={'brand': 'Samsung', 'name': 'Other', 'external_id': 'cat-ext-1'},
                      headers=headers)
    assert dup.status_code == 409
    assert client.post('/admin/devices', json={'name': 'No brand'}, headers=headers).status_code == 400
    assert client.post('/admin/devices', json={'brand': 'X', 'name': 'Y', 'colour': 'red'},
                       headers=headers).status_code == 400
    assert client.post('/admin/devices', json={'brand': 'X', 'name': 'Y', 'specifications': 'big'},
                       headers=headers).status_code == 400


def test_admin_updates_and_deactivates_device(client, make_headers):
    user = ensure_user('catalog_editor@example.com', role='manager')
    headers = make_headers(user.id, MANAGE)
    d = ensure_device('Catalog Editable', brand='Catalogbrand')
    resp = client.patch(f'/admin/devices/{d.id}', json={'image_url': 'https://img/edit.png'}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['image_url'] == 'https://img/edit.png'
    resp = client.delete(f'/admin/devices/{d.id}', headers=headers)
    assert resp.get_json() == {'status': 'deactivated', 'id': d.id}
    # soft delete keeps the row
    row = get_db().get(Device, d.id)
    assert row is not None and row.is_active is False


def test_admin_service_pricing(client, make_headers):
    user = ensure_user('catalog_pricing@example.com', role='manager')
    headers = make_headers(user.id, MANAGE)
    resp = client.post('/admin/services', json={'name': 'Catalog Port Repair', 'base_price': '49.99',
                                                'estimated_minutes': 45}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['base_price_cents'] == 4999
    assert body['category'] == 'general'
    assert body['estimated_minutes'] == 45
    dup = client.post('/admin/services', json={'name': 'catalog port repair'}, headers=headers)
    assert dup.status_code == 409
    assert client.post('/admin/services', json={'name': 'Neg', 'base_price': -1}, headers=headers).status_code == 400
    assert client.post('/admin/services', json={'name': 'Nan', 'base_price': 'cheap'}, headers=headers).status_code == 400
    sid = body['id']
    patched = client.patch(f'/admin/services/{sid}', json={'base_price_cents': 5500}, headers=headers).get_json()
    assert patched['base_price_cents'] == 5500
    assert client.delete(f'/admin/services/{sid}', headers=headers).status_code == 200
    assert get_db().get(Service, sid).is_active is False


def test_catalog_writes_need_manage(client, make_headers):
    user = ensure_user('catalog_readonly@example.com')
    headers = make_headers(user.id, READ)
    s = ensure_service('Catalog Protected')
    assert client.post('/admin/devices', json={'brand': 'A', 'name': 'B'}, headers=headers).status_code == 403
    assert client.delete(f'/admin/services/{s.id}', headers=headers).status_code == 403
