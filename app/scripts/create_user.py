"""
Create a user in an organization (there is no registration endpoint). From the project root:
  python -m app.scripts.create_user USERNAME PASSWORD ORGANIZATION_ID [role]
Example, first admin of an organization:
  python -m app.scripts.create_user admin your-secure-password acme admin
"""
import argparse
import sys

from app.core.database import session_scope
from app.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    hash_password,
)
from app.models.user import User


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a Ghostshell user.")
    parser.add_argument("username", help=f"1-{USERNAME_MAX_LEN} characters")
    parser.add_argument("password", help=f"{PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters")
    parser.add_argument("organization_id", help="Organization whose credentials and scans the user sees")
    parser.add_argument("role", nargs="?", default="user", choices=["user", "admin"])
    args = parser.parse_args(argv)

    username = args.username.strip()
    organization_id = args.organization_id.strip()
    if not username or len(username) > USERNAME_MAX_LEN:
        print("Invalid username length.", file=sys.stderr)
        return 1
    if not (PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN):
        print(f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1
    if not organization_id:
        print("Organization ID is required.", file=sys.stderr)
        return 1

    with session_scope() as db:
        if db.query(User).filter(User.username == username).first() is not None:
            print(f"User '{username}' already exists.", file=sys.stderr)
            return 1
        db.add(
            User(
                username=username,
                password_hash=hash_password(args.password),
                role=args.role,
                organization_id=organization_id,
            )
        )
    print(f"Created user '{username}' in '{organization_id}' with role '{args.role}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
