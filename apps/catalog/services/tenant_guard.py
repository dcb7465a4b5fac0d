"""Tenant and identifier guards. Every repository method calls these before touching the database."""

from apps.catalog.repositories.tenant_filters import active_where, tenant_where


class TenantRequiredError(ValueError):
    """Raised when tenant_id is None or empty."""

    pass


def require_tenant_id(tenant_id: str | None) -> str:
    """
    Validate tenant_id; return stripped value. Raises TenantRequiredError if missing/empty.
    Call at start of every tenant-scoped repo method, before any I/O.
    """
    if not tenant_id or not str(tenant_id).strip():
        raise TenantRequiredError("tenant_id is required and must be non-empty")
    return str(tenant_id).strip()


def require_id(value: str | None, name: str) -> str:
    """Validate an entity identifier (model id, version label). Raises ValueError if blank."""
    if not value or not str(value).strip():
        raise ValueError(f"{name} is required and must be non-empty")
    return str(value).strip()


__all__ = ["TenantRequiredError", "active_where", "require_id", "require_tenant_id", "tenant_where"]
