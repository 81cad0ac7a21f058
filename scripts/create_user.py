"""Create a user from the command line, prompting for the password."""

from __future__ import annotations

import argparse
import getpass
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from usermanager.config import Settings, load_settings
from usermanager.database import Database, EmailConflictError, StorageError


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add a user to the users table")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="SQLite file to write to (overrides the APP_ENV/USERS_DB_PATH settings)",
    )
    return parser.parse_args(argv)


def resolve_settings(db_path: str | None) -> Settings:
    settings = load_settings()
    if db_path:
        settings = replace(settings, database_path=Path(db_path).expanduser().resolve(strict=False))
    return settings


def read_password(attempts: int = 3) -> str:
    for _ in range(attempts):
        password = getpass.getpass("Password: ")
        if not password:
            print("Password must not be empty.", file=sys.stderr)
            continue
        if getpass.getpass("Confirm password: ") != password:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        return password
    raise SystemExit(f"No password set after {attempts} attempts.")


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = resolve_settings(args.db_path)
    if settings.is_test and args.db_path is None:
        print("APP_ENV=test uses an in-memory database; pass --db to persist the user.", file=sys.stderr)
        return 1

    password = read_password()

    database = Database(settings.database_path, echo_sql=settings.echo_sql)
    database.initialize()

    name, email = args.name.strip(), args.email.strip()
    try:
        user = database.create_user(name, email, password)
    except EmailConflictError:
        print(f"Error: email {email} is already registered", file=sys.stderr)
        return 1
    except StorageError as exc:
        print(f"Error: could not store user: {exc}", file=sys.stderr)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}> in {settings.database_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
