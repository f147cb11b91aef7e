#!/usr/bin/env python3
import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bakehouse.auth import hash_password
from bakehouse.db import execute, init_db, now_iso, query_one, seed_data


def main() -> None:
    parser = argparse.ArgumentParser(description="Create or update a bakehouse admin user")
    parser.add_argument("--username", required=True)
    parser.add_argument("--full-name", required=True)
    parser.add_argument("--password", required=True)
    args = parser.parse_args()

    init_db()
    seed_data(hash_password(args.password))
    role = query_one("SELECT id FROM roles WHERE name='admin'")

    existing = query_one("SELECT id FROM users WHERE username=?", (args.username,))
    if existing:
        execute(
            "UPDATE users SET full_name=?, password_hash=?, role_id=?, active=1 WHERE id=?",
            (args.full_name, hash_password(args.password), role["id"], existing["id"]),
        )
        print(f"Updated admin user: {args.username}")
    else:
        execute(
            "INSERT INTO users(username, full_name, password_hash, role_id, active, created_at) VALUES (?, ?, ?, ?, 1, ?)",
            (args.username, args.full_name, hash_password(args.password), role["id"], now_iso()),
        )
        print(f"Created admin user: {args.username}")


if __name__ == "__main__":
    main()
