"""Suite-wide fixtures for kubenav tests."""

from __future__ import annotations

import pytest

from kubenav.observability.logging import setup_logging


@pytest.fixture(autouse=True)
def _quiet_logging() -> None:
    """Only errors reach stderr so CLI output assertions see clean text."""
    setup_logging("error")
