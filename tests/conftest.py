"""Pytest fixtures for root-level tests (tenant isolation, cache invalidation, tag counters)."""

import os

import pytest

os.environ.setdefault("ENV", "test")
os.environ.setdefault("PYTEST_RUNNING", "1")

from tests._db_bootstrap import postgres_reachable  # noqa: E402


def _db_available_for_tests() -> bool:
    """True if DATABASE_TEST_URL is set and Postgres is reachable (short timeout)."""
    return postgres_reachable(os.environ.get("DATABASE_TEST_URL"))


# Marker for DB tests: skip if DATABASE_TEST_URL not set or Postgres not reachable
requires_db = pytest.mark.skipif(
    not _db_available_for_tests(),
    reason="DATABASE_TEST_URL not set or Postgres not reachable",
)
