"""Staff accounts and the RBAC rows behind them.

Role presets from `constants.permissions` are materialised lazily so a fresh
database (or the seed script) ends up with the same Role -> Permission wiring.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from flask import abort
from sqlalchemy import select, func

from repairshop import get_db
from repairshop.constants.permissions import SERVICE_ACTIONS, ROLE_PRESETS, ROLE_LABEL_PRESETS, ALL_PERMISSION_CODES
from repairshop.errors import NotFound, Conflict
from repairshop.models.authz import Permission, Role, RolePermission, User, UserRole
from repairshop.services.policy import compute_effective_permissions
from repairshop.utils.validation import validate_status

logger = logging.getLogger(__name__)


def ensure_permissions(session) -> int:
    existing = {p.code for p in session.execute(select(Permission)).scalars().all()}
    created = 0
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            code = f"{svc}.{act}"
            if code not in existing:
                session.add(Permission(code=code, service=svc, action=act, description=code.replace('.', ' - ')))
                created += 1
    session.flush()
    return created


def ensure_role_presets(session) -> Dict[str, Role]:
    """Create missing preset roles and top up their permissions. Flushes, never commits."""
    roles = {r.name: r for r in session.execute(select(Role)).scalars().all()}
    for name in ROLE_PRESETS:
        if name not in roles:
            roles[name] = Role(name=name, is_system=True)
            session.add(roles[name])
    session.flush()
    perms = {p.code: p for p in session.execute(select(Permission)).scalars()}
    for name, codes in ROLE_PRESETS.items():
        role = roles[name]
        desired = set(ALL_PERMISSION_CODES) if '*' in codes else set(codes)
        current = {rp.permission.code for rp in role.permissions}
        for code in sorted(desired - current):
            if code not in perms:
                logger.warning('Role %s references unknown permission %s', name, code)
                continue
            session.add(RolePermission(role=role, permission=perms[code]))
    session.flush()
    return roles


def _preset_role(label: str) -> Role:
    session = get_db()
    name = ROLE_LABEL_PRESETS[label]
    role = session.execute(select(Role).where(Role.name == name)).scalar_one_or_none()
    if role is None:
        ensure_permissions(session)
        role = ensure_role_presets(session)[name]
    return role


def get_user(user_id: int) -> User:
    user = get_db().get(User, user_id)
    if user is None:
        raise NotFound(f'User {user_id} not found')
    return user


def set_role(user: User, label: str):
    """Replace the user's role grants with the preset for `label`."""
    validate_status(label, User.ALL_ROLES, 'role')
    role = _preset_role(label)
    user.user_roles.clear()
    get_db().flush()
    user.user_roles.append(UserRole(role=role))
    user.role = label


def create_user(name: Optional[str], email: Optional[str], password: Optional[str],
                role: str = User.ROLE_TECHNICIAN, phone: Optional[str] = None) -> User:
    if not name or not email or not password:
        abort(400, description='name, email and password required')
    if len(password) < 8:
        abort(400, description='password must be at least 8 characters')
    session = get_db()
    email_n = email.strip().lower()
    if session.execute(select(User.id).where(func.lower(User.email) == email_n)).first():
        raise Conflict('A user with this email already exists')
    user = User(name=name.strip(), email=email_n, phone=phone, is_active=True)
    user.set_password(password)
    session.add(user)
    session.flush()
    set_role(user, role)
    session.commit()
    return user


def update_user(user: User, data: Dict[str, Any]) -> User:
    unknown = sorted(set(data) - {'name', 'phone', 'role', 'is_active', 'password'})
    if unknown:
        abort(400, description=f'Fields not editable: {unknown}')
    if data.get('name'):
        user.name = str(data['name']).strip()
    if 'phone' in data:
        user.phone = data['phone']
    if 'is_active' in data:
        user.is_active = bool(data['is_active'])
    if data.get('password'):
        if len(data['password']) < 8:
            abort(400, description='password must be at least 8 characters')
        user.set_password(data['password'])
    if 'role' in data and data['role'] != user.role:
        set_role(user, data['role'])
    get_db().commit()
    return user


def user_json(user: User) -> Dict[str, Any]:
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'phone': user.phone,
        'role': user.role,
        'is_active': user.is_active,
        'perms': compute_effective_permissions(user.id)['perms'],
    }


__all__ = ['ensure_permissions', 'ensure_role_presets', 'create_user', 'update_user', 'set_role', 'get_user', 'user_json']
