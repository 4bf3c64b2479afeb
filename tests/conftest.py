"""Shared pytest fixtures for diplan tests."""

import pytest

from diplan import SINGLETON, Container


@pytest.fixture()
def container() -> Container:
    """Default container resolving unregistered concrete types."""
    return Container()


@pytest.fixture()
def container_no_autoregister() -> Container:
    """Container with resolve_unregistered_concrete_types=False."""
    return Container(resolve_unregistered_concrete_types=False)


@pytest.fixture()
def container_singleton() -> Container:
    """Container with singleton as the default lifestyle."""
    return Container(default_lifestyle=SINGLETON)
