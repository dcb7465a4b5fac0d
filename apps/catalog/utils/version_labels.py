"""Version label helpers. Labels look like v1, v2, ...; numbering is max(existing) + 1, gaps are not reused."""

import re
from collections.abc import Iterable

VERSION_RE = re.compile(r"^v(\d+)$")


def parse_version_number(label: str | None) -> int | None:
    """Numeric suffix of a v<N> label, or None if the label is malformed."""
    if not label:
        return None
    m = VERSION_RE.match(label.strip())
    return int(m.group(1)) if m else None


def next_version_label(existing: Iterable[str]) -> str:
    """v1, v2, v4 -> v5. Malformed labels are ignored; no labels -> v1."""
    numbers = [n for n in (parse_version_number(label) for label in existing) if n is not None]
    return f"v{max(numbers, default=0) + 1}"


def version_sort_key(label: str) -> int:
    n = parse_version_number(label)
    return n if n is not None else -1
