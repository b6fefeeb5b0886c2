"""Shared test fixtures for az-relocate tests."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from az_relocate.app import app


@pytest.fixture()
def client():
    """Create a FastAPI test client."""
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def _mock_credential():
    """Prevent real Azure credential calls in every test."""
    mock_token = MagicMock()
    mock_token.token = "fake-token"
    with patch("az_relocate.azure_api._auth.credential") as cred:
        cred.get_token.return_value = mock_token
        yield cred


@pytest.fixture(autouse=True)
def _clear_catalog_cache():
    """Clear the SKU catalog cache between tests."""
    from az_relocate.azure_api import _catalog_cache

    _catalog_cache.clear()
    yield
    _catalog_cache.clear()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep ``AZ_RELOCATE_*`` variables and ``.env`` files out of the tests."""
    import os

    from az_relocate import settings

    for key in list(os.environ):
        if key.upper().startswith("AZ_RELOCATE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(settings, "_settings", None)
    yield
