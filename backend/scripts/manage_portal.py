#!/usr/bin/env python3
"""
Admin script for portal users and maintenance.

Usage:
    python scripts/manage_portal.py add-user --username jdoe --password SecurePass123! --email jdoe@example.org
    python scripts/manage_portal.py list-users
    python scripts/manage_portal.py make-superuser --username jdoe
    python scripts/manage_portal.py disable-user --username jdoe
    python scripts/manage_portal.py expire-searches --days 2
"""
import asyncio
import sys
import argparse
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from portal.database import get_db_context
from portal.models.user import User
from portal.services.auth import AuthService
from portal.services.user_account import expire_searches

MIN_SEARCH_AGE_DAYS = 2


async def add_user(username: str, password: str, email: str = None, is_superuser: bool = False) -> int:
    """Add a new user."""
    async with get_db_context() as db:
        if await AuthService.get_user_by_username(db, username):
            print(f"User {username} already exists!")
            return 1

        user = await AuthService.create_user(db, username=username, password=password, email=email)
        user.is_superuser = is_superuser

        print("User created successfully!")
        print(f"   Username: {user.username}")
        print(f"   ID: {user.id}")
        print(f"   Superuser: {user.is_superuser}")
    return 0


async def list_users() -> int:
    """List all users."""
    async with get_db_context() as db:
        result = await db.execute(select(User).order_by(User.created_at.desc()))
        users = result.scalars().all()

        if not users:
            print("No users found.")
            return 0

        print(f"\n{'Username':<25} {'Email':<35} {'Library card':<18} {'Active':<8} {'Superuser':<10}")
        print("-" * 100)
        for user in users:
            print(
                f"{user.username:<25} "
                f"{(user.email or 'N/A'):<35} "
                f"{(user.cat_id or '-'):<18} "
                f"{'Yes' if user.is_active else 'No':<8} "
                f"{'Yes' if user.is_superuser else 'No':<10}"
            )
        print(f"\nTotal users: {len(users)}")
    return 0


async def update_user(username: str, **changes) -> int:
    """Set flags on a user account."""
    async with get_db_context() as db:
        user = await AuthService.get_user_by_username(db, username)
        if not user:
            print(f"User {username} not found!")
            return 1
        for key, value in changes.items():
            setattr(user, key, value)
        if changes.get("is_active") is False:
            user.invalidate_all_tokens()
    print(f"User {username} updated: {changes}")
    return 0


async def expire(days: int) -> int:
    """Delete unsaved searches older than ``days`` days."""
    if days < MIN_SEARCH_AGE_DAYS:
        print(f"Expiration age must be at least {MIN_SEARCH_AGE_DAYS} days.")
        return 1
    async with get_db_context() as db:
        count = await expire_searches(db, days)
    print(f"{count} expired searches deleted.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Portal management script")
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    add_parser = subparsers.add_parser("add-user", help="Add a new user")
    add_parser.add_argument("--username", required=True, help="Username")
    add_parser.add_argument("--password", required=True, help="User password")
    add_parser.add_argument("--email", help="User email")
    add_parser.add_argument("--superuser", action="store_true", help="Make user a superuser")

    subparsers.add_parser("list-users", help="List all users")

    for name, help_text in (
        ("make-superuser", "Make a user a superuser"),
        ("disable-user", "Disable a user account"),
        ("enable-user", "Enable a user account"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--username", required=True, help="Username")

    expire_parser = subparsers.add_parser("expire-searches", help="Delete old unsaved searches")
    expire_parser.add_argument(
        "--days", type=int, default=MIN_SEARCH_AGE_DAYS, help="Minimum age in days (at least 2)"
    )

    args = parser.parse_args()

    if args.command == "add-user":
        return asyncio.run(add_user(args.username, args.password, args.email, args.superuser))
    if args.command == "list-users":
        return asyncio.run(list_users())
    if args.command == "make-superuser":
        return asyncio.run(update_user(args.username, is_superuser=True))
    if args.command == "disable-user":
        return asyncio.run(update_user(args.username, is_active=False))
    if args.command == "enable-user":
        return asyncio.run(update_user(args.username, is_active=True))
    if args.command == "expire-searches":
        return asyncio.run(expire(args.days))
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
