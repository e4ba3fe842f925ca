#!/usr/bin/env python3
"""Seed a tenant with the default roles and an Admin account.

Usage:
    python scripts/seed_tenant.py --code CLINIC001 --name "City Clinic" \
        --admin-username admin --admin-email admin@cityclinic.com

    # Password from the environment rather than the command line:
    ADMIN_PASSWORD='Admin@123' python scripts/seed_tenant.py --code CLINIC001 ...

Environment Variables:
    ADMIN_PASSWORD: Password for the admin user
    DATABASE_URL, JWT_SECRET, ENCRYPTION_KEY, HASH_SECRET: as for the API
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def seed(args: argparse.Namespace) -> dict:
    # Import here to avoid loading config before env vars are set
    from clinicauth.service.provisioning import provision_tenant
    from clinicauth.service.runtime import get_runtime

    runtime = get_runtime()
    return await provision_tenant(
        runtime.store,
        runtime.auth,
        args.code,
        args.name,
        admin_username=args.admin_username,
        admin_password=args.admin_password or os.environ.get("ADMIN_PASSWORD"),
        admin_email=args.admin_email,
        admin_full_name=args.admin_full_name,
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a clinic tenant")
    parser.add_argument("--code", required=True, help="Tenant code sent as X-Tenant-ID")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--admin-username", default="admin")
    parser.add_argument("--admin-email")
    parser.add_argument("--admin-password", help="Prefer ADMIN_PASSWORD env var")
    parser.add_argument("--admin-full-name")
    args = parser.parse_args()

    try:
        result = asyncio.run(seed(args))
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    tenant = result["tenant"]
    print(f"Tenant {tenant.code} (id: {tenant.id}) ready with roles: {', '.join(result['roles'])}")
    if result["admin_user_id"]:
        print(f"Admin user id: {result['admin_user_id']}")
    else:
        print("No admin created (pass --admin-email and a password to create one)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
