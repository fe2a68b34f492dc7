"""Integration test conftest — real SQL against the per-test SQLite database.

Inherits the root conftest.py fixtures (db_session, demo_referrer,
referral_code) and adds integration-specific markers.
"""

import pytest


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: DB integration tests (SQLite)")


@pytest.fixture(autouse=True)
def _mark_integration(request):
    """Auto-mark all tests in this directory as integration."""
    request.node.add_marker(pytest.mark.integration)
