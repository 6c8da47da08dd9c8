from __future__ import annotations

import pytest

from tests._fixtures.fake_host import FakeHost


@pytest.fixture
def fake_host() -> FakeHost:
    """Provide an empty in-memory host for the ``acme`` organization."""
    return FakeHost("acme")
