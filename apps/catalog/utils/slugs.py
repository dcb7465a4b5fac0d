"""URL-safe slugs for model names. Slugs are unique per tenant and immutable after creation."""

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
MAX_SLUG_LENGTH = 80


def slugify(name: str) -> str:
    """'Gear Box (v2)' -> 'gear-box-v2'. Falls back to 'model' when nothing survives."""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = _NON_ALNUM.sub("-", ascii_name.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-") or "model"


def candidate_slugs(base: str, taken: set[str]):
    """Yield base, base-2, base-3, ... skipping anything in taken."""
    if base not in taken:
        yield base
    n = 2
    while True:
        candidate = f"{base}-{n}"
        if candidate not in taken:
            yield candidate
        n += 1
