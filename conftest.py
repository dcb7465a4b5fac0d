"""Root conftest: env and Postgres schema bootstrap apply to ALL test paths (tests/, apps/catalog/tests/)."""

import os

import pytest

os.environ.setdefault("ENV", "test")
os.environ.setdefault("PYTEST_RUNNING", "1")

# DB override detection: DATABASE_TEST_URL only
DATABASE_TEST_URL = os.getenv("DATABASE_TEST_URL")

from tests._db_bootstrap import postgres_reachable, run_test_db_schema_fixture  # noqa: E402


def _db_available_for_schema() -> bool:
    """True if DATABASE_TEST_URL is set and Postgres is reachable."""
    if not DATABASE_TEST_URL:
        return False
    return postgres_reachable(DATABASE_TEST_URL)


@pytest.fixture(scope="session", autouse=True)
def test_db_schema():
    """Reset the Postgres test schema at session start. Only runs if DATABASE_TEST_URL is set and reachable.
    SQLite-backed tests are unaffected. DB tests are skipped via requires_db when not configured."""
    if not _db_available_for_schema():
        return
    run_test_db_schema_fixture()
