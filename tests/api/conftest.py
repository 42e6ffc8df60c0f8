"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from chatcart.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def owner_id() -> str:
    return "628123456789"
