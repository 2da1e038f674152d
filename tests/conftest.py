"""Pytest configuration and fixtures for Conduit tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from conduit.cache.store import reset_cache
from conduit.config import ENV_ENCRYPTION_KEY
from conduit.security.vault import CredentialVault

TEST_ENCRYPTION_KEY = "test-master-secret-do-not-use-in-production"


@pytest.fixture(autouse=True)
def set_test_encryption_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Provide a master secret so vault-dependent code works by default.

    Tests that need to verify missing-secret behavior should delete it.
    """
    monkeypatch.setenv(ENV_ENCRYPTION_KEY, TEST_ENCRYPTION_KEY)


@pytest.fixture(scope="session")
def vault() -> CredentialVault:
    """Shared vault (the key derivation runs once per session)."""
    return CredentialVault(TEST_ENCRYPTION_KEY)


@pytest.fixture(autouse=True)
def isolated_global_cache() -> Iterator[None]:
    """Reset the process-wide cache around every test."""
    reset_cache()
    yield
    reset_cache()
