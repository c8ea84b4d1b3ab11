#!/usr/bin/env python
"""Role catalog maintenance.

Usage:
    python backend/scripts/manage_roles.py seed                       # ensure system roles exist
    python backend/scripts/manage_roles.py setup-admin owner@groomery.in
    python backend/scripts/manage_roles.py sync --page-size 500       # repair claims drift for every user
    python backend/scripts/manage_roles.py show-roles [--json]
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from groomery import create_app  # type: ignore
from groomery.constants.permissions import permission_values
from groomery.errors import AuthzError
from groomery.services.registry import get_services


def cmd_seed(services, args):
    outcome = services.catalog.ensure_system_roles_exist()
    for name, result in sorted(outcome.items()):
        print(f"[INFO] {name}: {result}")
    return 0


def cmd_setup_admin(services, args):
    user = services.setup_administrator(args.email, password=args.password)
    print(f"[DONE] {user.email} ({user.uid}) is now admin at branch {services.default_branch_id}")
    return 0


def cmd_sync(services, args):
    report = services.sync.sync_all(page_size=args.page_size, page_token=args.page_token)
    print(f"[DONE] checked={report.checked} repaired={report.repaired} failed={report.failed}")
    for uid in report.failed_users:
        print(f"[WARN] sync failed for {uid}")
    return 3 if report.failed else 0


def print_role_summary(roles):
    if not roles:
        print("[INFO] No roles present.")
        return
    name_w = max(len(name) for name in roles)
    print(f"{'Role'.ljust(name_w)} | System | Count | Sample (up to 6)")
    print('-' * (name_w + 48))
    for name, role in roles.items():
        perms = permission_values(role.permissions)
        system = 'yes' if role.is_system else 'no'
        print(f"{name.ljust(name_w)} | {system.ljust(6)} | {str(len(perms)).rjust(5)} | {', '.join(perms[:6])}")


def cmd_show_roles(services, args):
    roles = services.catalog.get_role_definitions()
    if args.json:
        print(json.dumps({name: permission_values(r.permissions) for name, r in roles.items()}, indent=2, sort_keys=True))
    else:
        print_role_summary(roles)
    return 0


COMMANDS = {
    'seed': cmd_seed,
    'setup-admin': cmd_setup_admin,
    'sync': cmd_sync,
    'show-roles': cmd_show_roles,
}


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Manage groomery roles, administrators and claims",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed roles: manage_roles.py seed\n  repair claims: manage_roles.py sync\n""")
    )
    sub = p.add_subparsers(dest='command', required=True)
    sub.add_parser('seed', help='Create or heal the system roles')
    admin = sub.add_parser('setup-admin', help='Grant the admin role to EMAIL')
    admin.add_argument('email')
    admin.add_argument('--password', default=os.getenv('SEED_ADMIN_PASSWORD'), help='Password for a newly created identity')
    sync = sub.add_parser('sync', help='Rewrite identity claims that drifted from stored roles')
    sync.add_argument('--page-size', type=int, default=None, metavar='N')
    sync.add_argument('--page-token', default=None)
    show = sub.add_parser('show-roles', help='Print role -> permissions')
    show.add_argument('--json', action='store_true', help='Emit JSON instead of a table')
    return p.parse_args(argv)


def main(argv=None, app=None):
    args = parse_args(argv)
    # Seeding is explicit here; do not run the start-up bootstrap as a side effect
    app = app or create_app({'BOOTSTRAP_ON_START': False})
    with app.app_context():
        services = get_services()
        try:
            return COMMANDS[args.command](services, args)
        except AuthzError as e:
            print(f"[ERROR] {e.title}: {e.detail}")
            return 2


if __name__ == '__main__':
    sys.exit(main())
