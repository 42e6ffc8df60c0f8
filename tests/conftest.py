"""Shared fixtures for all tests."""

import pytest

from chatcart.infrastructure.repositories import reset_repositories


@pytest.fixture(autouse=True)
def fresh_repositories():
    """Reset repository singletons before and after each test."""
    reset_repositories()
    yield
    reset_repositories()
