#!/usr/bin/env python3
"""Mint a signed session token for local development against the API."""

from __future__ import annotations

import argparse
import json

from rental_admin.services.session_service import SESSION_TTL_SECONDS, create_session


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Issue a session token signed with SESSION_SIGNING_SECRET.",
    )
    parser.add_argument("--user-id", required=True, help="Identity service user id (roqUserId).")
    parser.add_argument("--tenant-id", required=True, help="Tenant the session is scoped to.")
    parser.add_argument("--role", action="append", default=[], help="Role name; repeat for several roles.")
    parser.add_argument("--ttl", type=int, default=SESSION_TTL_SECONDS, help="Lifetime in seconds.")
    parser.add_argument("--json", action="store_true", help="Print token and payload as JSON.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    payload = {"roqUserId": args.user_id, "tenantId": args.tenant_id, "roles": args.role}
    token = create_session(payload, ttl_seconds=args.ttl)
    if args.json:
        print(json.dumps({"sessionToken": token, "session": payload}, indent=2))
    else:
        print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
