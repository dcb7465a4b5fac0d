"""Display-name validation for models."""

from apps.catalog.errors import InvalidInputError

MAX_NAME_LENGTH = 100
# Names double as download filenames, so filesystem-reserved characters are rejected.
FORBIDDEN_NAME_CHARS = frozenset('<>:"/\\|?*')


def validate_model_name(name: str | None) -> str:
    """Return the trimmed name or raise InvalidInputError."""
    trimmed = (name or "").strip()
    if not trimmed:
        raise InvalidInputError("model name must not be empty")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise InvalidInputError(f"model name must be at most {MAX_NAME_LENGTH} characters")
    bad = sorted(FORBIDDEN_NAME_CHARS.intersection(trimmed))
    if bad:
        raise InvalidInputError(f"model name contains invalid characters: {''.join(bad)}")
    return trimmed
