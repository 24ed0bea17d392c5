from sqlalchemy import select
from repairshop import get_db
from repairshop.models.authz import Permission
from repairshop.services.users import ensure_permissions
from repairshop.constants.permissions import ROLE_PRESETS, ALL_PERMISSION_CODES
from tests.test_utils_seed import ensure_user

PERMS = ['ADMIN.USER.MANAGE']


def _admin(make_headers, email):
    admin = ensure_user(email, role='admin')
    return admin, make_headers(admin.id, PERMS)


def test_create_user_gets_preset_permissions(client, make_headers):
    _, headers = _admin(make_headers, 'users_admin_create@example.com')
    resp = client.post('/admin/users', json={'name': 'New Tech', 'email': 'New.Tech@Example.com',
                                             'password': 'longenough'}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['email'] == 'new.tech@example.com'
    assert body['role'] == 'technician'
    assert body['is_active'] is True
    assert set(body['perms']) == set(ROLE_PRESETS['Technician'])
    # the new account can log in straight away
    login = client.post('/auth/login', json={'email': 'new.tech@example.com', 'password': 'longenough'})
    assert login.status_code == 200
    assert login.get_json()['user_id'] == body['id']


def test_create_admin_gets_every_permission(client, make_headers):
    _, headers = _admin(make_headers, 'users_admin_wildcard@example.com')
    resp = client.post('/admin/users', json={'name': 'Boss', 'email': 'boss_user@example.com',
                                             'password': 'longenough', 'role': 'admin'}, headers=headers)
    assert resp.status_code == 201
    assert set(resp.get_json()['perms']) == set(ALL_PERMISSION_CODES)


def test_create_user_validation(client, make_headers):
    _, headers = _admin(make_headers, 'users_admin_validate@example.com')
    short = client.post('/admin/users', json={'name': 'S', 'email': 'short_pw@example.com', 'password': 'short'},
                        headers=headers)
    assert short.status_code == 400
    assert short.get_json()['error']['detail'] == 'password must be at least 8 characters'
    assert client.post('/admin/users', json={'email': 'noname@example.com', 'password': 'longenough'},
                       headers=headers).status_code == 400
    assert client.post('/admin/users', json={'name': 'R', 'email': 'bad_role@example.com', 'password': 'longenough',
                                             'role': 'owner'}, headers=headers).status_code == 400
    ensure_user('already_here@example.com')
    dup = client.post('/admin/users', json={'name': 'Dup', 'email': 'ALREADY_HERE@example.com',
                                            'password': 'longenough'}, headers=headers)
    assert dup.status_code == 409


def test_list_users_by_role(client, make_headers):
    _, headers = _admin(make_headers, 'users_admin_list@example.com')
    client.post('/admin/users', json={'name': 'Listed Manager', 'email': 'listed_manager@example.com',
                                      'password': 'longenough', 'role': 'manager'}, headers=headers)
    body = client.get('/admin/users?role=manager&limit=200', headers=headers).get_json()
    assert body['data']
    assert all(u['role'] == 'manager' for u in body['data'])
    assert 'listed_manager@example.com' in [u['email'] for u in body['data']]


def test_update_user_role_and_password(client, make_headers):
    _, headers = _admin(make_headers, 'users_admin_update@example.com')
    created = client.post('/admin/users', json={'name': 'Promote Me', 'email': 'promote_me@example.com',
                                                'password': 'longenough'}, headers=headers).get_json()
    resp = client.patch(f"/admin/users/{created['id']}", json={'role': 'manager', 'password': 'evenlonger'},
                        headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['role'] == 'manager'
    assert set(body['perms']) == set(ROLE_PRESETS['Manager'])
    assert client.post('/auth/login', json={'email': 'promote_me@example.com',
                                            'password': 'evenlonger'}).status_code == 200
    assert client.patch(f"/admin/users/{created['id']}", json={'password': 'tiny'}, headers=headers).status_code == 400
    assert client.patch(f"/admin/users/{created['id']}", json={'email': 'x@example.com'},
                        headers=headers).status_code == 400
    assert client.patch('/admin/users/99999999', json={'name': 'Ghost'}, headers=headers).status_code == 404


def test_deactivation(client, make_headers):
    admin, headers = _admin(make_headers, 'users_admin_deactivate@example.com')
    own = client.patch(f'/admin/users/{admin.id}', json={'is_active': False}, headers=headers)
    assert own.status_code == 400
    assert own.get_json()['error']['detail'] == 'Cannot deactivate your own account'
    created = client.post('/admin/users', json={'name': 'Leaver', 'email': 'leaver@example.com',
                                                'password': 'longenough'}, headers=headers).get_json()
    assert client.patch(f"/admin/users/{created['id']}", json={'is_active': False},
                        headers=headers).get_json()['is_active'] is False
    assert client.post('/auth/login', json={'email': 'leaver@example.com', 'password': 'longenough'}).status_code == 401


def test_user_admin_requires_permission(client, make_headers):
    user = ensure_user('users_not_admin@example.com')
    headers = make_headers(user.id, ['TICKET.READ'])
    assert client.get('/admin/users', headers=headers).status_code == 403


def test_seeded_permissions_have_text_descriptions(client, make_headers):
    session = get_db()
    ensure_permissions(session)
    session.commit()
    perm = session.execute(select(Permission).where(Permission.code == 'TICKET.ASSIGN')).scalar_one()
    assert perm.description in ('TICKET - ASSIGN', 'TICKET.ASSIGN')
