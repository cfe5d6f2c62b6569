from __future__ import annotations

import pytest

from execintel.persistence.guards import TenantPredicateError, tenant_predicate
from execintel.domain.models import StrategicReport
from execintel.services.auth.api_keys import (
    hash_api_key,
    issue_api_key,
    key_id_from_token,
    normalize_role,
    role_allows,
    role_rank,
)


def test_issued_key_carries_prefix_and_matching_hash() -> None:
    issued = issue_api_key(key_id="abc123")
    assert issued.key_id == "abc123"
    assert issued.raw_key.startswith("eik_abc123_")
    assert issued.display_prefix == issued.raw_key[:12]
    assert issued.key_hash == hash_api_key(issued.raw_key)
    assert issued.raw_key not in issued.key_hash
    assert key_id_from_token(issued.raw_key) == "abc123"


def test_issued_keys_are_unique() -> None:
    assert issue_api_key().raw_key != issue_api_key().raw_key


@pytest.mark.parametrize("token", ["", "abc", "nrgk_abc_secret", "eik_", "eik_abc", "eik__secret", "eik_abc_"])
def test_malformed_tokens_carry_no_key_id(token: str) -> None:
    assert key_id_from_token(token) is None


@pytest.mark.parametrize(
    "role, minimum, allowed",
    [
        ("reader", "reader", True),
        ("reader", "editor", False),
        ("editor", "editor", True),
        ("editor", "admin", False),
        ("admin", "reader", True),
        ("unknown", "reader", False),
        ("admin", "owner", False),
    ],
)
def test_role_hierarchy(role: str, minimum: str, allowed: bool) -> None:
    assert role_allows(role=role, minimum_role=minimum) is allowed


def test_role_rank_follows_privilege() -> None:
    assert [role_rank(role) for role in ("reader", "editor", "admin", "owner")] == [1, 2, 3, 0]


def test_normalize_role_rejects_unknown_roles() -> None:
    assert normalize_role(" Editor ") == "editor"
    with pytest.raises(ValueError):
        normalize_role("owner")


def test_queries_without_a_tenant_fail_closed() -> None:
    with pytest.raises(TenantPredicateError):
        tenant_predicate(StrategicReport, "")
    assert tenant_predicate(StrategicReport, "t1") is not None
