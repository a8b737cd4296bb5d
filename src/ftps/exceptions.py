"""FTPS-specific exceptions for the FTPS session client.

Custom exception hierarchy for control and data channel operations.
Every error keeps the reply that caused it (when there is one) so a
caller can inspect it and decide to disconnect or continue.
"""

from typing import Optional


class FTPSError(Exception):
    """Base exception for all FTPS-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception = None,
        reply_code: Optional[int] = None,
        reply_text: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.reply_code = reply_code
        self.reply_text = reply_text

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        if self.reply_text:
            return f"{self.message}: {self.reply_text}"
        return self.message


class FTPSConnectionError(FTPSError, ConnectionError):
    """Transport or TLS handshake failure on the control connection."""

    def __init__(self, host: str, port: int, original_error: Exception = None,
                 message: Optional[str] = None):
        self.host = host
        self.port = port
        super().__init__(message or f"Failed to connect to {host}:{port}", original_error)


class ProtocolError(FTPSError):
    """Malformed or unexpected reply from the server."""


class SecurityError(FTPSError):
    """Peer certificate does not match the expected server identity."""

    def __init__(self, host: str, channel: str = "control", original_error: Exception = None):
        self.host = host
        self.channel = channel
        message = f"Certificate of {channel} connection does not match '{host}'"
        super().__init__(message, original_error)


class DataConnectionError(FTPSError):
    """Failed to open or use a data connection."""


class NotFoundError(FTPSError):
    """Path does not exist on the server."""

    def __init__(self, path: Optional[str], operation: str, reply_code: Optional[int] = None,
                 reply_text: Optional[str] = None):
        self.path = path
        self.operation = operation
        message = f"Failed to {operation} '{path}': no such file or directory"
        super().__init__(message, reply_code=reply_code, reply_text=reply_text)


class KeepAliveError(FTPSError):
    """Control connection stopped answering keep-alives during a transfer."""

    def __init__(self, unacknowledged: int, io_errors: int = 0):
        self.unacknowledged = unacknowledged
        self.io_errors = io_errors
        message = (
            f"Control connection degraded during transfer "
            f"({unacknowledged} unacknowledged, {io_errors} I/O errors)"
        )
        super().__init__(message)


class FTPNotConnectedError(FTPSError):
    """Operation attempted without an active control connection."""

    def __init__(self, operation: str = "Operation"):
        message = f"{operation} requires an active FTPS connection"
        super().__init__(message)


class FTPSTimeoutError(FTPSConnectionError):
    """Control connection operation timed out."""

    def __init__(self, host: str, port: int, operation: str = "Operation",
                 timeout: Optional[float] = None, original_error: Exception = None):
        self.operation = operation
        self.timeout = timeout
        message = f"{operation} timed out after {timeout} seconds"
        super().__init__(host, port, original_error, message=message)


class FTPAuthenticationError(FTPSError):
    """FTP authentication (login) failed."""

    def __init__(self, username: str, reply_code: Optional[int] = None,
                 reply_text: Optional[str] = None):
        self.username = username
        message = f"Authentication failed for user '{username}'"
        super().__init__(message, reply_code=reply_code, reply_text=reply_text)
