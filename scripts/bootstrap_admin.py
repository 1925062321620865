#!/usr/bin/env python3
"""Create or promote a notevault administrator.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD='correct horse battery' python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password '...' [--revoke-sessions]

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password used when the account has to be created
    DATABASE_URL: PostgreSQL connection string (the memory store is used when unset)
    DATA_ROOT: Directory for the memory-store snapshot and generated secrets
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

ADMIN_ROLES = ["USER", "ADMIN"]
MIN_PASSWORD_LENGTH = 12


def bootstrap_admin(
    email: str,
    password: str,
    *,
    dry_run: bool = False,
    revoke_sessions: bool = False,
) -> dict:
    """Ensure ``email`` exists with the ADMIN role.

    Returns a dict with ``user_id``, ``email`` and ``status`` (one of
    ``created``, ``promoted``, ``already_admin`` or ``dry_run``).
    """
    # Deferred so the environment defaults set in main() are seen by the settings
    from notevault.service.runtime import get_runtime

    runtime = get_runtime()
    existing = runtime.store.get_user_by_email(email)

    if existing and existing.is_admin:
        status = "already_admin"
        user_id = existing.id
    elif dry_run:
        action = "promote" if existing else "create"
        print(f"[DRY RUN] Would {action} admin user {email}")
        return {"user_id": existing.id if existing else None, "email": email, "status": "dry_run"}
    elif existing:
        roles = sorted(set(existing.roles) | set(ADMIN_ROLES))
        runtime.store.update_user_roles(existing.id, roles)
        status = "promoted"
        user_id = existing.id
    else:
        user = runtime.auth.register(email, password)
        runtime.store.update_user_roles(user.id, ADMIN_ROLES)
        status = "created"
        user_id = user.id

    if revoke_sessions and not dry_run:
        # Outstanding refresh tokens still carry the old role set
        runtime.store.clear_refresh_tokens(user_id)

    print(f"{status}: {email} (id: {user_id})")
    return {"user_id": user_id, "email": email, "status": status}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Bootstrap a notevault admin user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--revoke-sessions",
        action="store_true",
        help="Drop the user's refresh tokens so every device signs in again",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args(argv)

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        return 1
    if not args.password or len(args.password) < MIN_PASSWORD_LENGTH:
        print(f"Error: a password of at least {MIN_PASSWORD_LENGTH} characters is required")
        return 1

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: using the memory store (set DATABASE_URL to write to PostgreSQL)")

    try:
        bootstrap_admin(
            args.email,
            args.password,
            dry_run=args.dry_run,
            revoke_sessions=args.revoke_sessions,
        )
    except Exception as exc:
        print(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
