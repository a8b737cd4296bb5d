"""Throw-away X.509 certificates for FTPS tests.

Certificates are self-signed, generated with cryptography, and written as
PEM files a pyftpdlib TLS handler can load.
"""

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID


@dataclass
class CertificateFiles:
    """PEM files and DER bytes of a generated certificate."""
    certfile: Path
    keyfile: Path
    der: bytes


def generate_certificate(
    directory: Path,
    common_name: str = "localhost",
    dns_names: Sequence[str] = ("localhost",),
    ip_addresses: Sequence[str] = ("127.0.0.1",),
    name: str = "server",
) -> CertificateFiles:
    """
    Create a self-signed certificate and its private key.

    Args:
        directory: Where the PEM files are written
        common_name: Subject CN
        dns_names: subjectAltName DNS entries
        ip_addresses: subjectAltName IP entries
        name: File name stem

    Returns:
        Paths of the written files and the certificate in DER form
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
    )
    alt_names = [x509.DNSName(dns) for dns in dns_names]
    alt_names += [x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses]
    if alt_names:
        builder = builder.add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
    cert = builder.sign(key, hashes.SHA256())

    directory.mkdir(parents=True, exist_ok=True)
    certfile = directory / f"{name}.crt"
    keyfile = directory / f"{name}.key"
    certfile.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    keyfile.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return CertificateFiles(
        certfile=certfile,
        keyfile=keyfile,
        der=cert.public_bytes(serialization.Encoding.DER),
    )
