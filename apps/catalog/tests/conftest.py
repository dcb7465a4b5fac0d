"""Pytest fixtures for catalog unit tests."""

import os

os.environ.setdefault("ENV", "test")

# Mirror: use shared marker from tests.conftest (single source of truth)
from tests.conftest import requires_db  # noqa: F401,E402
