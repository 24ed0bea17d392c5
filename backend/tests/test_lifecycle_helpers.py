"""Reusable test helpers for the appointment and ticket lifecycles.

Patterns unified:
 - Auth header creation using direct JWT claims (bypassing /auth/login).
 - Creation + transition sequencing with assertion helpers.
 - Error transition assertion.
"""
from __future__ import annotations
from datetime import date
from typing import Dict, List
from flask_jwt_extended import create_access_token
from tests.test_utils_seed import ensure_permissions, ensure_user, ensure_role, ensure_user_role_assignment
from repairshop import get_db

# ---------- Generic Auth Helpers ---------- #

def jwt_headers(user_id: int, perms: List[str]):
    token = create_access_token(identity=str(user_id), additional_claims={
        'perms': perms,
        'roles': [],
        'role': 'technician',
    })
    return {'Authorization': f'Bearer {token}'}


def seed_user_with_perms(email: str, perms: List[str], role_name: str = None):
    """Ensure permissions & user; optionally attach via a role if role_name provided."""
    session = get_db()
    ensure_permissions(perms)
    user = ensure_user(email)
    if role_name:
        role = ensure_role(role_name, perms)
        ensure_user_role_assignment(user, role)
    session.commit()
    return user

# ---------- Payload Helpers ---------- #

def booking_payload(email: str, on: date, at: str = '10:00', **extra):
    body = {
        'customer': {'name': email.split('@')[0].title(), 'email': email, 'phone': '555-0100'},
        'scheduled_date': on.isoformat(),
        'scheduled_time': at,
        'issues': ['screen_crack'],
        'description': 'Dropped on pavement',
    }
    body.update(extra)
    return body

# ---------- Assertion Helpers ---------- #

def assert_transition(client, url: str, headers: Dict[str,str], expected_status: int, expected_body_key: str = 'status', expected_body_value: str = None, json: dict = None):
    resp = client.post(url, headers=headers, json=json or {})
    assert resp.status_code == expected_status, resp.get_json()
    if expected_status < 400 and expected_body_value is not None:
        body = resp.get_json()
        assert body[expected_body_key] == expected_body_value
    return resp


def create_resource_and_assert(client, url: str, payload: dict, headers: Dict[str,str], expected_status_field: str = 'status', expected_initial_status: str = None):
    resp = client.post(url, json=payload, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    if expected_initial_status:
        assert body[expected_status_field] == expected_initial_status
    return body

# ---------- Domain Specific Wrappers ---------- #

def exercise_appointment_lifecycle(client, headers, email: str, on: date, at: str = '10:00', service_ids: List[int] = ()):
    """Book -> confirm -> check in -> convert; returns (appointment, ticket) JSON."""
    appt = create_resource_and_assert(client, '/appointments', booking_payload(email, on, at), headers,
                                      expected_initial_status='scheduled')
    aid = appt['id']
    assert_transition(client, f'/appointments/{aid}/confirm', headers, 200, expected_body_value='confirmed')
    assert_transition(client, f'/appointments/{aid}/check-in', headers, 200, expected_body_value='arrived')
    resp = client.post(f'/appointments/{aid}/convert', json={'selected_services': list(service_ids)}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return appt, resp.get_json()


def exercise_ticket_lifecycle(client, headers, ticket_id: int):
    """new -> in_progress -> on_hold -> in_progress -> completed via the status endpoint."""
    for target in ('in_progress', 'on_hold', 'in_progress', 'completed'):
        resp = client.patch(f'/orders/{ticket_id}/status', json={'status': target}, headers=headers)
        assert resp.status_code == 200, resp.get_json()
        assert resp.get_json()['status'] == target
    return resp.get_json()

__all__ = [
    'jwt_headers', 'seed_user_with_perms', 'booking_payload', 'assert_transition', 'create_resource_and_assert',
    'exercise_appointment_lifecycle', 'exercise_ticket_lifecycle'
]
