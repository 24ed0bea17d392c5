"""Test seeding utilities to reduce duplication.

These helpers centralize creation of users, roles, permissions and the shop's domain rows
(customers, catalog entries, tickets, API keys). All of them are idempotent where a natural
key exists so the shared in-memory database can be reused across the whole session.
"""
from datetime import timedelta
from typing import Iterable, Dict, Optional
from repairshop import get_db
from repairshop.models.authz import User, Role, Permission, RolePermission, UserRole, Base
from repairshop.utils.timeutil import utcnow


def ensure_permissions(codes: Iterable[str]):
    """Ensure each permission code exists; return dict code->Permission."""
    session = get_db()
    # Safety: ensure all tables exist (engine may be re-created mid-suite)
    Base.metadata.create_all(bind=session.get_bind(), checkfirst=True)
    out: Dict[str, Permission] = {}
    for code in codes:
        obj = session.query(Permission).filter_by(code=code).one_or_none()
        if not obj:
            if '.' not in code:
                raise ValueError(f"Permission code '{code}' missing SERVICE.ACTION pattern")
            service, action = code.split('.', 1)
            obj = Permission(code=code, service=service, action=action, description=code)
            session.add(obj); session.flush()
        out[code] = obj
    session.commit()
    return out


def ensure_user(email: str, name: Optional[str] = None, password: str = 'pw', role: str = User.ROLE_TECHNICIAN,
                is_active: bool = True) -> User:
    session = get_db()
    u = session.query(User).filter_by(email=email).one_or_none()
    if not u:
        u = User(name=name or email.split('@')[0], email=email, password_hash='', role=role, is_active=is_active)
        u.set_password(password)
        session.add(u); session.commit(); session.refresh(u)
    return u


def ensure_role(name: str, perm_codes: Iterable[str] = ()) -> Role:
    session = get_db()
    role = session.query(Role).filter_by(name=name).one_or_none()
    perms = ensure_permissions(perm_codes) if perm_codes else {}
    if not role:
        role = Role(name=name, is_system=False)
        session.add(role); session.flush()
    # attach any missing permissions
    existing_perm_ids = {rp.permission_id for rp in session.query(RolePermission).filter_by(role_id=role.id)}
    for p in perms.values():
        if p.id not in existing_perm_ids:
            session.add(RolePermission(role_id=role.id, permission_id=p.id))
    session.commit()
    return role


def ensure_user_role_assignment(user: User, role: Role):
    session = get_db()
    if not session.query(UserRole).filter_by(user_id=user.id, role_id=role.id).one_or_none():
        session.add(UserRole(user_id=user.id, role_id=role.id)); session.commit()


def seed_user_with_role(email: str, role_name: str, perm_codes: Iterable[str], password: str = 'pw'):
    """High level convenience: user + role (with perms) + assignment."""
    user = ensure_user(email, password=password)
    role = ensure_role(role_name, perm_codes)
    ensure_user_role_assignment(user, role)
    return user, role


# ---------------- Domain helpers ---------------- #
def ensure_customer(email: str, name: str = None, phone: str = None):
    """Idempotently ensure a Customer exists (by lowercased email)."""
    from repairshop.models.customer import Customer  # lazy import to avoid test import cycles
    session = get_db()
    email = email.lower()
    c = session.query(Customer).filter_by(email=email).one_or_none()
    if not c:
        c = Customer(name=name or email.split('@')[0].title(), email=email, phone=phone)
        session.add(c); session.commit(); session.refresh(c)
    return c


def ensure_device(name: str, brand: str = 'Apple', external_id: str = None, is_active: bool = True):
    from repairshop.models.catalog import Device
    session = get_db()
    d = session.query(Device).filter_by(brand=brand, name=name).one_or_none()
    if not d:
        d = Device(brand=brand, model_name=name, name=name, external_id=external_id, device_type='smartphone',
                   specifications={}, is_active=is_active)
        session.add(d); session.commit(); session.refresh(d)
    return d


def ensure_service(name: str, base_price_cents: int = 0, category: str = 'screen', is_active: bool = True):
    from repairshop.models.catalog import Service
    session = get_db()
    s = session.query(Service).filter_by(name=name).one_or_none()
    if not s:
        s = Service(name=name, category=category, base_price_cents=base_price_cents, is_active=is_active)
        session.add(s); session.commit(); session.refresh(s)
    return s


def create_ticket(customer, status: str = 'new', assigned_to: int = None, **fields):
    """Create a RepairTicket row directly (non-idempotent). Numbers follow the production format."""
    from repairshop.models.repair_ticket import RepairTicket
    session = get_db()
    t = RepairTicket(customer_id=customer.id, status=status, priority=fields.pop('priority', 'medium'),
                     repair_issues=fields.pop('repair_issues', ['screen_crack']), assigned_to=assigned_to,
                     total_time_minutes=0, **fields)
    session.add(t); session.flush()
    t.ticket_number = f'TPG{t.id:05d}'
    session.commit(); session.refresh(t)
    return t


def backdate_timer(ticket, minutes: int):
    """Pretend the running timer on `ticket` was started `minutes` ago."""
    session = get_db()
    ticket.timer_started_at = utcnow() - timedelta(minutes=minutes)
    session.commit()
    return ticket


def ensure_api_key(name: str, domains: Iterable[str] = (), permissions=None, expires_in_days: int = None):
    """Create an API key; returns (ApiKey, plaintext). Not idempotent: every call issues a new key."""
    from repairshop.services.api_keys import create_api_key
    key, plaintext = create_api_key(name, None, list(domains), permissions, expires_in_days)
    get_db().commit()
    return key, plaintext


__all__ = [
    'ensure_permissions', 'ensure_user', 'ensure_role', 'ensure_user_role_assignment', 'seed_user_with_role',
    'ensure_customer', 'ensure_device', 'ensure_service', 'create_ticket', 'backdate_timer', 'ensure_api_key',
]
