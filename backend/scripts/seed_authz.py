#!/usr/bin/env python
"""Idempotent bootstrap for facilities and the initial super admin.

Usage:
    python backend/scripts/seed_authz.py                          # seed normally
    python backend/scripts/seed_authz.py --facility "North Wing"  # also ensure a named facility
    python backend/scripts/seed_authz.py --show-roles             # print role -> permission counts
    python backend/scripts/seed_authz.py --dry-run                # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --validate               # check role defaults against the catalog
    python backend/scripts/seed_authz.py --sweep-sessions         # delete expired sessions and restore tokens
    python backend/scripts/seed_authz.py --session-stats          # print session counts
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib, difflib
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from staffauth import create_app, get_db  # type: ignore
from staffauth.constants.permissions import ALL_PERMISSION_NAMES, ROLE_PERMISSIONS, SUPER_ADMIN, USER_TYPE_SYSTEM
from staffauth.models.identity import Base, Facility, User
import staffauth.models.session  # noqa: F401
import staffauth.models.audit  # noqa: F401
import staffauth.models.resources  # noqa: F401
from staffauth.services import sessions as session_service

DEFAULT_FACILITIES = ['Main Campus']


def ensure_facilities(session, names):
    existing = {f.name for f in session.execute(select(Facility)).scalars().all()}
    created = 0
    for name in names:
        if name not in existing:
            session.add(Facility(name=name, is_active=True))
            existing.add(name)
            created += 1
    return created


def ensure_initial_admin(session):
    username = os.getenv('SEED_ADMIN_USERNAME', 'admin')
    if session.execute(select(User).where(User.username == username)).scalar_one_or_none():
        return False
    user = User(
        username=username,
        email=os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com'),
        name='Super Admin',
        password_hash='',
        role=SUPER_ADMIN,
        user_type=USER_TYPE_SYSTEM,
        is_active=True,
    )
    user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    session.add(user)
    print(f"[INFO] Created initial super admin '{username}' with temporary password.")
    return True


def validate_roles():
    problems = []
    for role, names in ROLE_PERMISSIONS.items():
        if role == SUPER_ADMIN:
            continue
        for name in names:
            if name not in ALL_PERMISSION_NAMES:
                suggestion = difflib.get_close_matches(name, ALL_PERMISSION_NAMES, n=1)
                hint = f" (did you mean {suggestion[0]})" if suggestion else ''
                problems.append(f"Role '{role}' references unknown permission: {name}{hint}")
    return problems


def build_role_permission_map():
    return {
        role: sorted(ALL_PERMISSION_NAMES) if role == SUPER_ADMIN else sorted(set(names))
        for role, names in ROLE_PERMISSIONS.items()
    }


def print_role_summary(mapping):
    name_w = max(len(r) for r in mapping)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 8)")
    print('-' * (name_w + 40))
    for name, perms in mapping.items():
        print(f"{name.ljust(name_w)} | {str(len(perms)).rjust(5)} | {', '.join(perms[:8])}")


def report_sessions(sweep: bool):
    """Run the expired-session sweeper when asked and return (removed, stats)."""
    removed = session_service.sweep_expired() if sweep else 0
    return removed, session_service.session_stats()


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed facilities and the initial super admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--facility', action='append', default=[], metavar='NAME', help='Ensure a facility with this name (repeatable)')
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->permissions JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate role defaults against the permission catalog; exits non-zero on problems')
    p.add_argument('--sweep-sessions', action='store_true', help='Delete expired sessions and restore tokens (schedule via cron)')
    p.add_argument('--session-stats', action='store_true', help='Print total/active/expired/impersonating session counts')
    return p.parse_args()


def main():
    args = parse_args()
    if args.validate:
        problems = validate_roles()
        if problems:
            print('\n[VALIDATION] FAIL:')
            for problem in problems:
                print(' -', problem)
            sys.exit(2)
        print('[VALIDATION] OK: All role defaults reference catalog permissions.')

    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM users LIMIT 1'))
        except Exception:
            # Auto-create schema for bootstrap; in real env prefer alembic upgrade
            session.rollback()
            Base.metadata.create_all(session.get_bind())
        session.commit()

        try:
            created_f = ensure_facilities(session, args.facility or DEFAULT_FACILITIES)
            created_admin = ensure_initial_admin(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Facilities would create: {created_f}, Admin would create: {created_admin}")
            else:
                session.commit()
                print(f"[DONE] Facilities created: {created_f}, Admin created: {created_admin}")
            if args.sweep_sessions or args.session_stats:
                removed, stats = report_sessions(args.sweep_sessions and not args.dry_run)
                if args.sweep_sessions:
                    print(f"[SESSIONS] Expired sessions removed: {removed}")
                if args.session_stats:
                    print('[SESSIONS] ' + ', '.join(f"{k}={v}" for k, v in sorted(stats.items())))
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    mapping = build_role_permission_map()
    if args.show_roles:
        print('\nRole Permission Summary:')
        print_role_summary(mapping)
    if args.export_json is not None:
        # Deterministic checksum for change detection
        canonical = json.dumps(mapping, sort_keys=True, separators=(',', ':'))
        payload = {
            'roles': mapping,
            'meta': {
                'roles_checksum_sha256': hashlib.sha256(canonical.encode('utf-8')).hexdigest(),
                'distinct_permissions': len(ALL_PERMISSION_NAMES),
                'role_names_sorted': sorted(mapping),
            }
        }
        if args.export_json == '-':
            print(json.dumps(payload, indent=2, sort_keys=True))
        else:
            with open(args.export_json, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            print(f"[INFO] Exported JSON to {args.export_json}")


if __name__ == '__main__':
    main()
