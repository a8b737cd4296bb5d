"""Endpoint identity check for TLS peers.

The check runs on the DER certificate presented by the peer, so it works
whether or not the certificate chain itself was verified by the SSL
context. Matching follows RFC 6125: subjectAltName DNS and IP entries
first, the subject common name only when the certificate has no DNS
entries. A single left-most wildcard label is honoured.
"""

import ipaddress
import logging
from typing import List, Optional, Union

from cryptography import x509
from cryptography.x509.oid import NameOID

from src.ftps.exceptions import SecurityError

logger = logging.getLogger("ftps_client.identity")


def _as_ip(host: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


def _dns_matches(pattern: str, host: str) -> bool:
    pattern = pattern.lower().rstrip(".")
    host = host.lower().rstrip(".")
    if pattern == host:
        return True
    if not pattern.startswith("*."):
        return False
    # Wildcard covers exactly one label and never a bare suffix
    host_labels = host.split(".")
    if len(host_labels) < 3:
        return False
    return ".".join(host_labels[1:]) == pattern[2:]


def certificate_names(der_cert: bytes) -> List[str]:
    """Return the identities a certificate claims, for diagnostics."""
    cert = x509.load_der_x509_certificate(der_cert)
    names: List[str] = []
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        names.extend(san.get_values_for_type(x509.DNSName))
        names.extend(str(ip) for ip in san.get_values_for_type(x509.IPAddress))
    except x509.ExtensionNotFound:
        pass
    names.extend(
        attr.value for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    )
    return names


def matches_host(der_cert: bytes, host: str) -> bool:
    """
    Check whether a certificate is valid for a host name or IP address.

    Args:
        der_cert: Peer certificate in DER form
        host: Host name or IP literal used to reach the peer

    Returns:
        True if one of the certificate identities matches
    """
    cert = x509.load_der_x509_certificate(der_cert)
    ip = _as_ip(host)

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = None

    if san is not None:
        if ip is not None:
            return ip in san.get_values_for_type(x509.IPAddress)
        dns_names = san.get_values_for_type(x509.DNSName)
        if dns_names:
            return any(_dns_matches(name, host) for name in dns_names)

    if ip is not None:
        return False
    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return any(_dns_matches(attr.value, host) for attr in common_names)


def verify_peer(ssl_sock, host: str, channel: str = "control") -> None:
    """
    Verify the certificate of an established TLS socket against a host.

    Args:
        ssl_sock: Handshaken ssl.SSLSocket
        host: Expected server identity
        channel: "control" or "data", used in the error

    Raises:
        SecurityError: If the peer sent no certificate or it does not match
    """
    der_cert = ssl_sock.getpeercert(binary_form=True)
    if not der_cert:
        raise SecurityError(host, channel)
    if not matches_host(der_cert, host):
        logger.warning(
            f"Endpoint check failed on {channel} connection: expected {host}, "
            f"certificate names {certificate_names(der_cert)}"
        )
        raise SecurityError(host, channel)
    logger.debug(f"Endpoint check passed on {channel} connection for {host}")
