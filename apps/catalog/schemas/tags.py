"""Tag DTOs."""

from pydantic import BaseModel, ConfigDict


class TagInfo(BaseModel):
    """Facet entry attached to a model or version. Equality is by id when deduplicating."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str
    color: str | None = None


class TagSummary(BaseModel):
    """Tenant tag list entry, ordered by usage."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    color: str | None = None
    description: str | None = None
    usage_count: int
