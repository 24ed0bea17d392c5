from __future__ import annotations
from typing import Optional, Set
from flask import abort
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import select
from repairshop.models.authz import User, UserRole, RolePermission, Permission, Role
from repairshop import get_db

WILDCARD_ROLE = 'Admin'


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_user_id() -> Optional[int]:
    ident = get_jwt_identity()
    return int(ident) if ident is not None else None


def compute_effective_permissions(user_id: int):
    session = get_db()
    role_ids = {r.role_id for r in session.execute(select(UserRole).where(UserRole.user_id==user_id)).scalars()}
    perm_codes = set()
    if role_ids:
        role_perms = session.execute(select(RolePermission).where(RolePermission.role_id.in_(role_ids))).scalars().all()
        perm_ids = [rp.permission_id for rp in role_perms]
        if perm_ids:
            for p in session.execute(select(Permission).where(Permission.id.in_(perm_ids))).scalars():
                perm_codes.add(p.code)
    # Admin wildcard: expands to every permission known to the database
    admin_role = session.execute(select(Role).where(Role.name==WILDCARD_ROLE)).scalar_one_or_none()
    if admin_role and admin_role.id in role_ids:
        for p in session.execute(select(Permission)).scalars():
            perm_codes.add(p.code)
    return {
        'roles': sorted(role_ids),
        'perms': sorted(perm_codes),
    }


def get_active_user(user_id: int) -> User:
    """Return an active staff user or abort 400 (used for assignment targets)."""
    user = get_db().execute(select(User).where(User.id==user_id)).scalar_one_or_none()
    if not user or not user.is_active:
        abort(400, description='assigned_to must reference an active user')
    return user
