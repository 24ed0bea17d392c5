"""Central enum-like definitions to avoid typos in permission/service strings.
Never rename codes silently; add new ones and migrate role presets instead.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['APPT', 'TICKET', 'CUSTOMER', 'DEVICE', 'RPT', 'ADMIN']

SERVICE_ACTIONS = {
    'APPT': ['READ', 'MANAGE'],
    'TICKET': ['READ', 'MANAGE', 'CHANGE_STATUS', 'ASSIGN'],
    'CUSTOMER': ['READ', 'MANAGE'],
    'DEVICE': ['READ', 'MANAGE'],
    'RPT': ['READ'],
    'ADMIN': ['APIKEY.MANAGE', 'AUDIT.READ', 'TIMER.MANAGE', 'USER.MANAGE'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_PRESETS: Dict[str, List[str]] = {
    'Technician': [
        'APPT.READ',
        'TICKET.READ', 'TICKET.CHANGE_STATUS',
        'CUSTOMER.READ',
        'DEVICE.READ',
    ],
    # Manager: everything operational, no key / audit / user administration
    'Manager': [
        'APPT.READ', 'APPT.MANAGE',
        'TICKET.READ', 'TICKET.MANAGE', 'TICKET.CHANGE_STATUS', 'TICKET.ASSIGN',
        'CUSTOMER.READ', 'CUSTOMER.MANAGE',
        'DEVICE.READ', 'DEVICE.MANAGE',
        'RPT.READ',
        'ADMIN.TIMER.MANAGE',
    ],
    'Admin': ['*'],
}

# User.role label -> role preset granted on creation
ROLE_LABEL_PRESETS: Dict[str, str] = {
    'technician': 'Technician',
    'manager': 'Manager',
    'admin': 'Admin',
}
