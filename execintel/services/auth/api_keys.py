from __future__ import annotations

from dataclasses import dataclass
import hashlib
import secrets
from uuid import uuid4


# Lowest to highest: readers browse reports and digests, editors draft,
# generate and edit, admins approve, publish, deliver and hard-delete.
ROLES: tuple[str, ...] = ("reader", "editor", "admin")

TOKEN_PREFIX = "eik"
_DISPLAY_PREFIX_LEN = 12


@dataclass(frozen=True)
class IssuedApiKey:
    key_id: str
    raw_key: str
    display_prefix: str
    key_hash: str


def normalize_role(role: str) -> str:
    normalized = (role or "").strip().lower()
    if normalized not in ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_rank(role: str) -> int:
    """1-based position in ``ROLES``; unknown roles rank 0 and pass no check."""
    return ROLES.index(role) + 1 if role in ROLES else 0


def role_allows(*, role: str, minimum_role: str) -> bool:
    required = role_rank(minimum_role)
    return required > 0 and role_rank(role) >= required


def hash_api_key(raw_key: str) -> str:
    # Only the digest is stored; the raw key is shown once at creation.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def key_id_from_token(token: str) -> str | None:
    """Return the key id embedded in ``eik_<key_id>_<secret>``, or None if malformed."""
    prefix, sep, rest = token.partition("_")
    if prefix != TOKEN_PREFIX or not sep:
        return None
    key_id, sep, secret = rest.partition("_")
    if not key_id or not sep or not secret:
        return None
    return key_id


def issue_api_key(*, key_id: str | None = None) -> IssuedApiKey:
    resolved_id = key_id or uuid4().hex
    raw_key = f"{TOKEN_PREFIX}_{resolved_id}_{secrets.token_urlsafe(32)}"
    return IssuedApiKey(
        key_id=resolved_id,
        raw_key=raw_key,
        display_prefix=raw_key[:_DISPLAY_PREFIX_LEN],
        key_hash=hash_api_key(raw_key),
    )
