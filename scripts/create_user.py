#!/usr/bin/env python3
"""Create a user account that can log in and manage app passwords.

Usage:
    # Using environment variables:
    NEW_USER_LOGIN=alice NEW_USER_PASSWORD=SecurePassword123! python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --login alice --password SecurePassword123!

Environment Variables:
    NEW_USER_LOGIN: Login name for the user
    NEW_USER_PASSWORD: Password for the user (must meet complexity requirements)
    SHARED_FS_ROOT: Directory holding the token store state
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


def create_user(login_name: str, password: str, dry_run: bool = False) -> dict:
    """Create a user unless one with this login name exists.

    Returns:
        dict with user_id, login_name, and status ('created', 'exists' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from apptokens.service.runtime import get_runtime

    runtime = get_runtime()

    existing_user = runtime.store.get_user_by_login_name(login_name)
    if existing_user:
        print(f"User {login_name} already exists (id: {existing_user.id})")
        return {"user_id": existing_user.id, "login_name": login_name, "status": "exists"}

    if dry_run:
        print(f"[DRY RUN] Would create user: {login_name}")
        return {"user_id": None, "login_name": login_name, "status": "dry_run"}

    user = runtime.auth.create_user(login_name, password)
    print(f"Created user: {login_name} (id: {user.id})")
    return {"user_id": user.id, "login_name": login_name, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Create a user for the app token service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--login",
        default=os.environ.get("NEW_USER_LOGIN"),
        help="Login name (or set NEW_USER_LOGIN env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("NEW_USER_PASSWORD"),
        help="Password (or set NEW_USER_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.login:
        print("Error: --login or NEW_USER_LOGIN environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or NEW_USER_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    try:
        create_user(args.login, args.password, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
