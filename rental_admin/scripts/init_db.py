#!/usr/bin/env python3
"""Create the rental admin tables on the configured database."""

from __future__ import annotations

import argparse
import os
import sys

from sqlalchemy import create_engine, inspect

from rental_admin.db.base import Base
from rental_admin.models import rental_models  # noqa: F401  registers the tables on Base


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create missing rental admin tables.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_ADMIN_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_ADMIN_DB_URL env var.",
    )
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if not args.db_url:
        print("Missing --db-url (or RENTAL_ADMIN_DB_URL).", file=sys.stderr)
        return 2

    engine = create_engine(args.db_url, future=True)
    if args.drop:
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    tables = sorted(inspect(engine).get_table_names())
    engine.dispose()
    print(f"Tables present: {', '.join(tables)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
