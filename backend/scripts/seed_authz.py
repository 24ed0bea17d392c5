#!/usr/bin/env python
"""Idempotent seed script for permissions, role presets and the first admin.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> permission counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --export-json # print role -> permissions JSON with checksum
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from repairshop import create_app, get_db  # type: ignore
from repairshop.models.authz import Base, Role, User
from repairshop.services.users import ensure_permissions, ensure_role_presets, create_user


def ensure_initial_admin(session):
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com').lower()
    if session.execute(select(User).where(User.email == admin_email)).scalar_one_or_none():
        return False
    create_user('Admin', admin_email, os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'), User.ROLE_ADMIN)
    print(f"[INFO] Created initial admin user {admin_email} with temporary password.")
    return True


def build_role_permission_map(session):
    mapping = {}
    for role in session.execute(select(Role)).scalars().all():
        mapping[role.name] = sorted({rp.permission.code for rp in role.permissions})
    return mapping


def print_role_summary(mapping):
    if not mapping:
        print("[INFO] No roles present.")
        return
    name_w = max(len(n) for n in mapping)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 8)")
    print('-' * (name_w + 40))
    for name, perms in sorted(mapping.items()):
        print(f"{name.ljust(name_w)} | {str(len(perms)).rjust(5)} | {', '.join(perms[:8])}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed RBAC permissions & roles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--no-admin', action='store_true', help='Skip creating the initial admin user')
    p.add_argument('--export-json', action='store_true', help='Print role->permissions JSON with a checksum')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM permissions LIMIT 1'))
        except Exception:
            # Bootstrap only; real environments run `alembic upgrade head`
            session.rollback()
            from repairshop.models import audit, customer, catalog, appointment, repair_ticket, time_entry, api_key, email_log  # noqa: F401
            Base.metadata.create_all(session.get_bind())

    with app.app_context():
        session = get_db()
        try:
            created_p = ensure_permissions(session)
            ensure_role_presets(session)
            if args.dry_run:
                mapping = build_role_permission_map(session)
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Permissions would create: {created_p}")
            else:
                session.commit()
                if not args.no_admin:
                    # commits on its own
                    ensure_initial_admin(session)
                mapping = build_role_permission_map(session)
                print(f"[DONE] Permissions created: {created_p}, Roles: {len(mapping)}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(mapping)
            if args.export_json:
                canonical = json.dumps(mapping, sort_keys=True, separators=(',', ':'))
                payload = {
                    'roles': mapping,
                    'meta': {
                        'roles_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                        'dry_run': args.dry_run,
                    },
                }
                print(json.dumps(payload, indent=2, sort_keys=True))
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
