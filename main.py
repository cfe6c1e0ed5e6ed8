#!/usr/bin/env python3
"""
O'secours -- administration CLI.

Usage:
  python main.py seed
  python main.py create-admin --email ops@example.com --password 'S3cret!pass'
  python main.py create-admin --email ops@example.com --password '...' --first-name Ops --last-name Team

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the database to seed (default: osecours.db at the repo root)
  APP_ENV        development / test / production; the matching JWT_SECRET_* must be set
"""

import argparse
import sys
from typing import Optional

from auth.models import AdminProfile, RescueMemberProfile, RescueService, User
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.config import get_settings
from core.db import create_db_engine

DEFAULT_ADMIN_EMAIL = "lycoris@blue.com"
DEFAULT_ADMIN_PASSWORD = "admin1234"

DEFAULT_RESCUE_SERVICES = [
    RescueService(name="Pompiers", service_type="Incendie", contact_number="112"),
    RescueService(name="Police Nationale", service_type="Sécurité", contact_number="17"),
    RescueService(name="SAMU", service_type="Urgence médicale", contact_number="15"),
    RescueService(name="Protection Civile", service_type="Secours divers", contact_number="114"),
]


def create_admin(
    store: CredentialStore,
    email: str,
    password: str,
    first_name: str = "Admin",
    last_name: str = "Systeme",
) -> Optional[int]:
    """Create an administrator. Returns None if the e-mail is already taken."""
    if store.email_in_use(email):
        return None
    return store.create_user(
        User(
            email=email,
            password_hash=hash_password(password),
            profile=AdminProfile(),
            first_name=first_name,
            last_name=last_name,
        )
    )


def seed(store: CredentialStore) -> list[str]:
    """Create the default administrator, the default rescue services and one
    rescue member per service. Idempotent by e-mail and service name.

    Returns the e-mails of the accounts created by this run.
    """
    created: list[str] = []
    if create_admin(store, DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD) is not None:
        created.append(DEFAULT_ADMIN_EMAIL)

    for i, template in enumerate(DEFAULT_RESCUE_SERVICES, start=1):
        service = store.get_rescue_service_by_name(template.name)
        if service is None:
            service = RescueService(
                name=template.name,
                service_type=template.service_type,
                contact_number=template.contact_number,
            )
            service.id = store.create_rescue_service(service)

        email = f"secours{i}@example.com"
        if store.email_in_use(email):
            continue
        store.create_user(
            User(
                email=email,
                password_hash=hash_password(f"secours123{i}"),
                profile=RescueMemberProfile(
                    rescue_service=service,
                    badge_number=f"RM00{i}",
                    position="Intervenant",
                ),
                first_name=f"Membre{i}",
                last_name=f"Service{i}",
            )
        )
        created.append(email)
    return created


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="osecours",
        description="O'secours backend administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-admin --email ops@example.com --password 'S3cret!pass'
  DATABASE_URL=sqlite:///staging.db python main.py seed
        """,
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("seed", help="Create the default administrator, rescue services and rescue members")

    admin = sub.add_parser("create-admin", help="Create one administrator account")
    admin.add_argument("--email", required=True, help="Login e-mail of the new administrator")
    admin.add_argument("--password", required=True, help="Initial password")
    admin.add_argument("--first-name", default="Admin", metavar="NAME", help="First name (default: Admin)")
    admin.add_argument("--last-name", default="Systeme", metavar="NAME", help="Last name (default: Systeme)")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    settings = get_settings()
    store = CredentialStore(create_db_engine(settings.database_url))
    try:
        if args.command == "seed":
            created = seed(store)
            if created:
                print(f"  Created {len(created)} account(s):")
                for email in created:
                    print(f"    {email}")
            else:
                print("  Nothing to do: default accounts already exist.")
            return 0

        user_id = create_admin(store, args.email, args.password, args.first_name, args.last_name)
        if user_id is None:
            print(f"  [!] '{args.email}' is already in use.")
            return 1
        print(f"  Administrator {args.email} created (id {user_id}).")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
