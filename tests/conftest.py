"""Pytest configuration and shared fixtures for FTPS session client tests."""

from pathlib import Path
from typing import Generator

import pytest

from tests.certificates import CertificateFiles, generate_certificate


@pytest.fixture(scope="session")
def cert_dir(tmp_path_factory) -> Path:
    """Directory holding generated certificates."""
    return tmp_path_factory.mktemp("certs")


@pytest.fixture(scope="session")
def server_certificate(cert_dir: Path) -> CertificateFiles:
    """Certificate valid for localhost and 127.0.0.1."""
    return generate_certificate(cert_dir, name="localhost")


@pytest.fixture(scope="session")
def foreign_certificate(cert_dir: Path) -> CertificateFiles:
    """Certificate issued for a different host."""
    return generate_certificate(
        cert_dir,
        common_name="ftp.example.invalid",
        dns_names=("ftp.example.invalid",),
        ip_addresses=(),
        name="foreign",
    )


@pytest.fixture
def temp_settings_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Provide a temporary settings file path for testing."""
    yield tmp_path / "settings.json"
