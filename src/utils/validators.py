"""Input validators for the FTPS session client.

Every validator returns a tuple of (is_valid, error_message) so the CLI
can report the first problem before opening a connection.
"""

import ipaddress
import re
from pathlib import Path
from typing import Optional, Tuple, Union

ValidationResult = Tuple[bool, Optional[str]]

# One DNS label: letters, digits and inner hyphens
LABEL_PATTERN = re.compile(r'^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$')

MAX_HOSTNAME_LENGTH = 253

PROTECTION_LETTERS = ("C", "S", "E", "P")


def _to_int(value, label: str) -> Tuple[Optional[int], Optional[str]]:
    if isinstance(value, bool):
        return None, f"{label} must be a number"
    try:
        return int(value), None
    except (ValueError, TypeError):
        return None, f"{label} must be a number"


def validate_ip_address(ip: str) -> ValidationResult:
    """
    Validate an IPv4 or IPv6 address.

    Args:
        ip: Address as text, e.g. "192.168.1.10" or "::1"

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not ip or not ip.strip():
        return False, "IP address is required"
    try:
        ipaddress.ip_address(ip.strip())
    except ValueError:
        return False, f"Invalid IP address format: {ip.strip()}"
    return True, None


def validate_hostname(hostname: str) -> ValidationResult:
    """Validate a DNS hostname label by label."""
    if not hostname or not hostname.strip():
        return False, "Hostname is required"

    hostname = hostname.strip().rstrip(".")
    if len(hostname) > MAX_HOSTNAME_LENGTH:
        return False, f"Hostname longer than {MAX_HOSTNAME_LENGTH} characters"
    if all(LABEL_PATTERN.match(label) for label in hostname.split(".")):
        return True, None
    return False, f"Invalid hostname format: {hostname}"


def validate_host(host: str) -> ValidationResult:
    """
    Validate the server to connect to.

    Args:
        host: IP address or hostname

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not host or not host.strip():
        return False, "Host is required"

    if validate_ip_address(host)[0] or validate_hostname(host)[0]:
        return True, None
    return False, f"Invalid host: {host.strip()}. Must be a valid IP address or hostname."


def validate_port(port: int) -> ValidationResult:
    """Validate a TCP port number (1-65535)."""
    port, error = _to_int(port, "Port")
    if error:
        return False, error
    if not 1 <= port <= 65535:
        return False, f"Port must be between 1 and 65535, got {port}"
    return True, None


def validate_timeout(timeout: int) -> ValidationResult:
    """
    Validate a connect timeout.

    Args:
        timeout: Seconds allowed for the connection and each reply

    Returns:
        Tuple of (is_valid, error_message)
    """
    timeout, error = _to_int(timeout, "Timeout")
    if error:
        return False, error
    if not 1 <= timeout <= 300:
        return False, f"Timeout must be between 1 and 300 seconds, got {timeout}"
    return True, None


def validate_keep_alive(seconds: float) -> ValidationResult:
    """Validate a keep-alive interval; zero disables keep-alives."""
    try:
        seconds = float(seconds)
    except (ValueError, TypeError):
        return False, "Keep-alive interval must be a number"
    if seconds < 0:
        return False, f"Keep-alive interval must not be negative, got {seconds:g}"
    return True, None


def validate_protection_level(level: str) -> ValidationResult:
    """Validate a PROT letter."""
    if not level or level.strip().upper() not in PROTECTION_LETTERS:
        return False, f"Protection level must be one of {', '.join(PROTECTION_LETTERS)}"
    return True, None


def validate_file_path(path: Union[str, Path], must_exist: bool = True) -> ValidationResult:
    """
    Validate a local file to upload.

    Args:
        path: Local path
        must_exist: Require an existing regular file

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not path:
        return False, "File path is required"

    path = Path(path)
    if must_exist and not path.exists():
        return False, f"File does not exist: {path}"
    if must_exist and not path.is_file():
        return False, f"Path is not a file: {path}"
    return True, None


def validate_remote_path(path: str) -> ValidationResult:
    """
    Validate a remote pathname sent as a command argument.

    Leading and trailing blanks are significant on the server and are kept.

    Args:
        path: Remote path

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not path:
        return False, "Remote path is required"
    # A line break would end the command and start another one
    if "\r" in path or "\n" in path:
        return False, "Remote path cannot contain line breaks"
    return True, None
