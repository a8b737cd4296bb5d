"""Fixtures providing running FTPS servers for integration tests."""

import pytest

from tests.integration.mock_ftps_server import MockFTPSServer


@pytest.fixture
def ftps_server(server_certificate):
    """Explicit FTPS server with a certificate matching 127.0.0.1."""
    with MockFTPSServer(server_certificate) as server:
        yield server


@pytest.fixture
def implicit_ftps_server(server_certificate):
    """Implicit FTPS server with a certificate matching 127.0.0.1."""
    with MockFTPSServer(server_certificate, implicit=True) as server:
        yield server


@pytest.fixture
def foreign_ftps_server(foreign_certificate):
    """Explicit FTPS server presenting a certificate for another host."""
    with MockFTPSServer(foreign_certificate) as server:
        yield server
