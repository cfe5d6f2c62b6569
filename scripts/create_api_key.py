from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from uuid import uuid4

from execintel.core.logging import configure_logging
from execintel.domain.models import ApiKey, User
from execintel.persistence.db import SessionLocal
from execintel.services.auth.api_keys import issue_api_key, normalize_role


logger = logging.getLogger("create_api_key")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create an API key for a tenant")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument("--role", required=True, help="Role: reader|editor|admin")
    parser.add_argument("--name", required=True, help="Key label")
    parser.add_argument("--user-id", default=None, help="Existing user id to attach")
    parser.add_argument("--email", default=None, help="User email recorded on audit entries")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    role = normalize_role(args.role)
    user_id = args.user_id or uuid4().hex
    issued = issue_api_key()

    async with SessionLocal() as session:
        user = await session.get(User, user_id)
        if user is None:
            user = User(id=user_id, tenant_id=args.tenant, email=args.email, role=role, is_active=True)
            session.add(user)
        else:
            if user.tenant_id != args.tenant:
                raise ValueError("User tenant_id does not match requested tenant")
            user.role = role
            if args.email:
                user.email = args.email
        # User row must exist before the key's FK.
        await session.flush()
        session.add(
            ApiKey(
                id=issued.key_id,
                user_id=user.id,
                tenant_id=user.tenant_id,
                key_prefix=issued.display_prefix,
                key_hash=issued.key_hash,
                name=args.name,
            )
        )
        await session.commit()
    logger.info("api_key_created tenant_id=%s key_id=%s role=%s", args.tenant, issued.key_id, role)

    print("API key created:")
    print(f"  key_id: {issued.key_id}")
    print(f"  key_prefix: {issued.display_prefix}")
    print("  api_key: ")
    print(f"    {issued.raw_key}")
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
