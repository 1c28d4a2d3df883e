#!/usr/bin/env python3
import argparse
import os
import sys
from pathlib import Path

import psycopg

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "db" / "migrations"


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply the SQL migrations in order (idempotent).")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/inventory",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--dir", default=str(MIGRATIONS_DIR))
    args = parser.parse_args()

    files = sorted(Path(args.dir).glob("*.sql"))
    if not files:
        print(f"no migrations found in {args.dir}", file=sys.stderr)
        return 2

    with psycopg.connect(args.db) as conn:
        for path in files:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(path.read_text(encoding="utf-8"))
            print(f"applied {path.name}")

    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
