#!/usr/bin/env python3
"""
Print a bcrypt hash for a shared POS account password.

Store the output in POS_PASSWORD_CASHIER_MAIN_STORE / POS_PASSWORD_MAIN_TOWN
instead of the plaintext password.
"""
import argparse
import getpass
import sys

from inventory_server.app.config import POS_PASSWORD_ENV_KEYS
from inventory_server.app.security import hash_password


def main() -> int:
    parser = argparse.ArgumentParser(description="Hash a POS account password for the environment.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", help="Prompted for when omitted.")
    args = parser.parse_args()

    email = (args.email or "").strip().lower()
    env_key = POS_PASSWORD_ENV_KEYS.get(email)
    if not env_key:
        print(f"not a restricted POS account: {email}", file=sys.stderr)
        return 2

    password = args.password or getpass.getpass("Password: ")
    if not password:
        print("password is required", file=sys.stderr)
        return 2

    print(f"{env_key}={hash_password(password)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
