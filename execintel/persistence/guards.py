from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_

from execintel.core.config import get_settings


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Raised when a repository query is built without a tenant scope.
    message: str


def require_tenant_id(tenant_id: str | None) -> None:
    settings = get_settings()
    if not settings.authz_require_tenant_predicate:
        return
    if not tenant_id:
        raise TenantPredicateError("tenant_id is required to scope this query")


def tenant_predicate(model, tenant_id: str) -> Any:
    # Every tenant-owned table is filtered through this helper.
    require_tenant_id(tenant_id)
    return model.tenant_id == tenant_id


def owned_by(model, tenant_id: str, entity_id: str) -> Any:
    """Match one row by id inside a tenant.

    Lookups by id alone are never issued for tenant-owned tables, so a foreign id
    resolves to "not found" rather than to another tenant's row.
    """
    return and_(tenant_predicate(model, tenant_id), model.id == entity_id)
