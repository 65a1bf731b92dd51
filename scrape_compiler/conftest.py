"""
Pytest configuration and fixtures for the scrape configuration compiler.

This module provides shared fixtures and configuration for all test modules.
"""

import pytest
from hypothesis import settings, Verbosity

from scrape_compiler.assembler import Owner
from scrape_compiler.credentials import CredentialResolver, InMemoryCredentialStore

# Configure Hypothesis profiles
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
)

settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.register_profile(
    "dev",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

ACCESS_CREDS = {
    "cid": "some-client-id",
    "cs": "some-client-secret",
    "username": "some-username",
    "password": "some-password",
    "ca": "some-ca-cert",
    "cert": "some-cert",
    "key": "some-key",
    "bearer": "some-bearer",
}


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Load the default hypothesis profile
    settings.load_profile("default")


@pytest.fixture
def store():
    """Credential store holding the default/access-creds Secret."""
    store = InMemoryCredentialStore()
    store.add_secret("default", "access-creds", ACCESS_CREDS)
    return store


@pytest.fixture
def resolver(store):
    """Resolver over the shared store with the default mount root."""
    return CredentialResolver(store)


@pytest.fixture
def owner():
    """The agent instance documents are compiled for."""
    return Owner("default", "test")
