"""Catalog error taxonomy.

NotFoundError and ForbiddenError look the same to callers (ForbiddenError is a NotFoundError);
the subclass only exists so audit logging can tell a cross-tenant probe from a plain miss.
"""


class CatalogError(Exception):
    """Base class for catalog errors."""

    pass


class NotFoundError(CatalogError):
    """Model, version or file does not exist, is tombstoned, or is outside the tenant."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ForbiddenError(NotFoundError):
    """Entity exists but belongs to another tenant. Surfaced exactly like NotFoundError."""

    pass


class InvalidInputError(CatalogError, ValueError):
    """Caller-supplied value failed validation (names, labels, pagination bounds)."""

    pass


class BackendError(CatalogError):
    """Relational store rejected or failed a statement. Fatal to the request."""

    pass


class BackendUnavailableError(BackendError):
    """Relational store unreachable (connection refused, pool timeout, dropped connection)."""

    pass


class CacheUnavailableError(CatalogError):
    """Cache backend unreachable. Recovered locally as a forced miss."""

    pass


class InvalidationFailureError(CatalogError):
    """Store write committed but cache invalidation did not complete; stale reads possible until TTL."""

    def __init__(self, keys: list[str], cause: BaseException | None = None) -> None:
        super().__init__(f"cache invalidation failed for {len(keys)} key pattern(s): {', '.join(keys)}")
        self.keys = keys
        self.cause = cause
