"""FTPS control connection management.

Provides ConnectionState enum, FTPSConnectionConfig dataclass and the
ControlChannel class. ControlChannel composes a plain ftplib.FTP engine
(command framing, reply reading, PASV/PORT negotiation) and layers the TLS
negotiation of RFC 4217 on top of it: implicit TLS wraps the socket before
the greeting, explicit TLS upgrades a cleartext session with AUTH.
"""

import logging
import select
import socket
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from ftplib import FTP, Error as FTPLibError
from typing import Optional, Union

from src.ftps import identity
from src.ftps.commands import FTPCmd, TLSMode, command_token
from src.ftps.exceptions import (
    DataConnectionError,
    FTPNotConnectedError,
    FTPSConnectionError,
    FTPSError,
    FTPSTimeoutError,
    ProtocolError,
    SecurityError,
)
from src.ftps.reply import (
    NEED_ACCOUNT,
    SECURITY_DATA_EXCHANGE_COMPLETE,
    Reply,
    parse_reply,
)

logger = logging.getLogger("ftps_client.connection")

TimeoutValue = Union[timedelta, int, float, None]

DEFAULT_PORT = 21
DEFAULT_IMPLICIT_PORT = 990


class ConnectionState(Enum):
    """Control connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class FTPSConnectionConfig:
    """FTPS connection configuration."""
    host: str
    port: Optional[int] = None
    username: str = "anonymous"
    tls_mode: TLSMode = TLSMode.EXPLICIT
    passive_mode: bool = True
    timeout: int = 30
    auth_value: str = "TLS"
    endpoint_checking: bool = False
    verify_certificate: bool = False
    cafile: Optional[str] = None
    protection_level: str = "P"
    keep_alive_timeout: float = 0
    keep_alive_reply_timeout: float = 1
    data_timeout: float = 0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.host:
            raise ValueError("Host is required")
        self.tls_mode = TLSMode(self.tls_mode)
        if self.port is None:
            self.port = default_port(self.tls_mode)
        if not 1 <= self.port <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {self.port}")
        if not 1 <= self.timeout <= 300:
            raise ValueError(f"Timeout must be between 1 and 300, got {self.timeout}")
        if self.protection_level.upper() not in ("C", "S", "E", "P"):
            raise ValueError(f"Unknown protection level: {self.protection_level}")
        for name in ("keep_alive_timeout", "keep_alive_reply_timeout", "data_timeout"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")


def default_port(tls_mode: TLSMode) -> int:
    """Well-known port for a TLS mode."""
    return DEFAULT_IMPLICIT_PORT if tls_mode is TLSMode.IMPLICIT else DEFAULT_PORT


def build_ssl_context(verify_certificate: bool = False, cafile: Optional[str] = None) -> ssl.SSLContext:
    """
    Create the client SSL context shared by control and data connections.

    Hostname checking is left to the endpoint identity check so that it
    can be switched on and off independently of chain verification.

    Args:
        verify_certificate: Require a certificate chain trusted by cafile
            (or the system store)
        cafile: Optional PEM bundle of trusted certificates

    Returns:
        Configured SSLContext
    """
    if verify_certificate:
        context = ssl.create_default_context(cafile=cafile)
        context.check_hostname = False
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def to_timedelta(value: TimeoutValue) -> timedelta:
    """Normalize a timeout setting; None (disabled) becomes zero."""
    if value is None:
        return timedelta(0)
    if not isinstance(value, timedelta):
        value = timedelta(seconds=value)
    if value < timedelta(0):
        raise ValueError(f"Timeout must not be negative, got {value}")
    return value


def socket_timeout(value: timedelta) -> Optional[float]:
    """Socket timeout for a duration; zero blocks indefinitely."""
    seconds = value.total_seconds()
    return seconds if seconds > 0 else None


class ControlChannel:
    """Owns the TLS-secured control connection to one server."""

    def __init__(
        self,
        tls_mode: TLSMode = TLSMode.EXPLICIT,
        context: Optional[ssl.SSLContext] = None,
        auth_value: str = "TLS",
        connect_timeout: float = 30,
        encoding: str = "utf-8",
    ):
        """
        Initialize the control channel.

        Args:
            tls_mode: Implicit or explicit TLS, fixed for the channel lifetime
            context: SSL context; a non-verifying one is created if omitted
            auth_value: Argument sent with AUTH in explicit mode
            connect_timeout: Seconds allowed for connect and each reply
            encoding: Control connection character encoding
        """
        self._tls_mode = TLSMode(tls_mode)
        self._context = context or build_ssl_context()
        self._auth_value = auth_value
        self._connect_timeout = connect_timeout
        self._encoding = encoding

        self._ftp: Optional[FTP] = None
        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._last_reply: Optional[Reply] = None
        self._connection_id = 0
        self._connected_at: Optional[datetime] = None
        self._last_activity: Optional[datetime] = None
        self._error_message: Optional[str] = None

        self._endpoint_checking = False
        self._keep_alive_timeout = timedelta(0)
        self._keep_alive_reply_timeout = timedelta(seconds=1)
        self._data_timeout = timedelta(0)

    # -- configuration -------------------------------------------------

    @property
    def tls_mode(self) -> TLSMode:
        return self._tls_mode

    @property
    def context(self) -> ssl.SSLContext:
        return self._context

    @property
    def endpoint_checking(self) -> bool:
        """Whether peer certificates must match the control host."""
        return self._endpoint_checking

    @endpoint_checking.setter
    def endpoint_checking(self, enabled: bool) -> None:
        self._endpoint_checking = bool(enabled)

    def set_control_keep_alive_timeout(self, value: TimeoutValue) -> None:
        """Interval between NOOPs during a transfer; None disables."""
        self._keep_alive_timeout = to_timedelta(value)

    def get_control_keep_alive_timeout(self) -> timedelta:
        return self._keep_alive_timeout

    def set_control_keep_alive_reply_timeout(self, value: TimeoutValue) -> None:
        """How long to wait for a keep-alive reply; None waits forever."""
        self._keep_alive_reply_timeout = to_timedelta(value)

    def get_control_keep_alive_reply_timeout(self) -> timedelta:
        return self._keep_alive_reply_timeout

    def set_data_timeout(self, value: TimeoutValue) -> None:
        """Read/write timeout on data connections; None blocks forever."""
        self._data_timeout = to_timedelta(value)

    def get_data_timeout(self) -> timedelta:
        return self._data_timeout

    # -- state ---------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """True if currently connected."""
        return self._state == ConnectionState.CONNECTED

    @property
    def connection_id(self) -> int:
        """Increases on every successful connect; keys per-connection caches."""
        return self._connection_id

    @property
    def host(self) -> Optional[str]:
        return self._host

    @property
    def remote_port(self) -> Optional[int]:
        """Port of the server end of the control connection."""
        return self._port

    @property
    def connected_at(self) -> Optional[datetime]:
        """Timestamp when connection was established."""
        return self._connected_at

    @property
    def last_activity(self) -> Optional[datetime]:
        """Timestamp of last reply received."""
        return self._last_activity

    @property
    def error_message(self) -> Optional[str]:
        """Last error message if state is ERROR."""
        return self._error_message

    @property
    def last_reply(self) -> Optional[Reply]:
        return self._last_reply

    @property
    def reply_code(self) -> Optional[int]:
        """Code of the most recent reply."""
        return self._last_reply.code if self._last_reply else None

    @property
    def reply_string(self) -> Optional[str]:
        """Full text of the most recent reply."""
        return self._last_reply.text if self._last_reply else None

    @property
    def ftp(self) -> FTP:
        """
        Get the underlying base FTP engine.

        Raises:
            FTPNotConnectedError: If not connected
        """
        if not self.is_connected or self._ftp is None:
            raise FTPNotConnectedError("FTP access")
        return self._ftp

    @property
    def tls_session(self) -> Optional[ssl.SSLSession]:
        """TLS session of the control connection, for data channel resumption."""
        sock = self._ftp.sock if self._ftp else None
        if isinstance(sock, ssl.SSLSocket):
            return sock.session
        return None

    # -- connection lifecycle -----------------------------------------

    def connect(self, host: str, port: Optional[int] = None) -> Reply:
        """
        Open the control connection and secure it with TLS.

        Args:
            host: Server host name or IP address
            port: Server port (990 for implicit, 21 for explicit if omitted)

        Returns:
            The last reply of the connection sequence

        Raises:
            FTPSConnectionError: If the socket or TLS handshake fails
            FTPSTimeoutError: If connecting times out
            SecurityError: If endpoint checking rejects the certificate
            ProtocolError: If the greeting or AUTH reply is not positive
        """
        if self._ftp is not None:
            self._close_socket()

        port = port or default_port(self._tls_mode)
        self._host = host
        self._port = port
        self._state = ConnectionState.CONNECTING
        self._error_message = None
        self._last_reply = None

        try:
            try:
                sock = socket.create_connection((host, port), timeout=self._connect_timeout)
            except socket.timeout as e:
                raise FTPSTimeoutError(host, port, "Connection", self._connect_timeout, e)
            except OSError as e:
                raise FTPSConnectionError(host, port, e)

            self._ftp = FTP(encoding=self._encoding)
            self._ftp.set_debuglevel(0)
            self._ftp.host = host
            self._ftp.port = port

            if self._tls_mode is TLSMode.IMPLICIT:
                self._attach(self._handshake(sock))
                reply = self._read_greeting()
            else:
                self._attach(sock)
                self._read_greeting()
                reply = self.execute_command(FTPCmd.AUTH, self._auth_value)
                if reply.code != SECURITY_DATA_EXCHANGE_COMPLETE:
                    raise ProtocolError(
                        f"Server refused AUTH {self._auth_value}",
                        reply_code=reply.code,
                        reply_text=reply.text,
                    )
                self._attach(self._handshake(self._ftp.sock))

        except FTPSError as e:
            self._state = ConnectionState.ERROR
            self._error_message = str(e)
            self._close_socket()
            raise

        self._state = ConnectionState.CONNECTED
        self._connection_id += 1
        self._connected_at = datetime.now()
        self._last_activity = self._connected_at
        logger.info(f"Connected to {host}:{port} ({self._tls_mode.value} TLS)")
        return reply

    def _read_greeting(self) -> Reply:
        reply = self.get_reply()
        if not reply.is_completion:
            raise ProtocolError(
                f"Server {self._host}:{self._port} is not ready",
                reply_code=reply.code,
                reply_text=reply.text,
            )
        return reply

    def _handshake(self, sock: socket.socket) -> ssl.SSLSocket:
        """Run the client TLS handshake on the control socket."""
        try:
            tls_sock = self._context.wrap_socket(sock, server_hostname=self._host)
        except ssl.SSLCertVerificationError as e:
            sock.close()
            raise SecurityError(self._host, "control", e)
        except (ssl.SSLError, OSError) as e:
            sock.close()
            raise FTPSConnectionError(
                self._host, self._port, e,
                message=f"TLS handshake with {self._host}:{self._port} failed",
            )

        if self._endpoint_checking:
            try:
                identity.verify_peer(tls_sock, self._host, "control")
            except SecurityError:
                tls_sock.close()
                raise
        logger.debug(f"Control connection secured with {tls_sock.version()}")
        return tls_sock

    def _attach(self, sock: socket.socket) -> None:
        """Point the base engine at a (new) control socket."""
        self._ftp.sock = sock
        self._ftp.af = sock.family
        self._ftp.file = sock.makefile("r", encoding=self._encoding)

    def wrap_data_socket(self, sock: socket.socket) -> ssl.SSLSocket:
        """
        Secure a freshly opened data socket with the control TLS session.

        The control connection's session is offered for resumption so the
        data channel is bound to the already authenticated peer. Endpoint
        checking applies independently of whether the session was resumed.

        Args:
            sock: Connected data socket

        Returns:
            Handshaken SSLSocket

        Raises:
            SecurityError: If the certificate is rejected
            DataConnectionError: If the handshake fails
        """
        session = self.tls_session
        try:
            try:
                tls_sock = self._context.wrap_socket(
                    sock, server_hostname=self._host, session=session
                )
            except ssl.SSLError:
                raise
            except ValueError:
                # Session belongs to another context; handshake without it
                tls_sock = self._context.wrap_socket(sock, server_hostname=self._host)
        except ssl.SSLCertVerificationError as e:
            sock.close()
            raise SecurityError(self._host, "data", e)
        except (ssl.SSLError, OSError) as e:
            sock.close()
            raise DataConnectionError("TLS handshake on data connection failed", e)

        if self._endpoint_checking:
            try:
                identity.verify_peer(tls_sock, self._host, "data")
            except SecurityError:
                tls_sock.close()
                raise
        logger.debug(f"Data connection secured, session reused: {tls_sock.session_reused}")
        return tls_sock

    def login(self, user: str, password: str, account: Optional[str] = None) -> bool:
        """
        Authenticate on the control connection.

        Args:
            user: User name
            password: Password
            account: Account sent if the server asks for one

        Returns:
            True if the server accepted the credentials
        """
        reply = self.execute_command(FTPCmd.USER, user)
        if reply.is_completion:
            return True
        if not reply.is_intermediate:
            return False

        reply = self.execute_command(FTPCmd.PASS, password)
        if reply.code == NEED_ACCOUNT and account:
            reply = self.execute_command(FTPCmd.ACCT, account)
        return reply.is_completion

    def disconnect(self) -> None:
        """Close the control connection gracefully."""
        if self._ftp is not None and self._ftp.sock is not None and self.is_connected:
            try:
                self.execute_command(FTPCmd.QUIT)
            except FTPSError as e:
                # Best effort close
                logger.debug(f"QUIT failed: {e}")
        self._close_socket()
        self._state = ConnectionState.DISCONNECTED
        self._connected_at = None

    def abort(self) -> None:
        """Shut the control socket down so blocked reads return promptly."""
        sock = self._ftp.sock if self._ftp else None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def _close_socket(self) -> None:
        if self._ftp is not None:
            try:
                self._ftp.close()
            except OSError as e:
                logger.debug(f"Error closing control socket: {e}")
        self._ftp = None

    def _fail(self, error: FTPSError) -> FTPSError:
        """Tear the channel down after a fatal I/O error."""
        self._state = ConnectionState.ERROR
        self._error_message = str(error)
        self._close_socket()
        return error

    # -- command / reply ----------------------------------------------

    def send_command(self, verb, *args) -> None:
        """
        Send one command line without reading the reply.

        Args:
            verb: Command keyword (string or FTPCmd)
            *args: Arguments joined with single spaces; None is skipped
        """
        if self._ftp is None or self._ftp.sock is None:
            raise FTPNotConnectedError(command_token(verb))

        line = " ".join([command_token(verb)] + [str(a) for a in args if a is not None])
        if line.startswith("PASS "):
            logger.debug("> PASS ****")
        else:
            logger.debug(f"> {line}")

        try:
            self._ftp.putcmd(line)
        except OSError as e:
            raise self._fail(FTPSConnectionError(self._host, self._port, e))

    def wait_for_reply(self, timeout: timedelta) -> bool:
        """
        Wait until reply bytes are available without consuming them.

        Reading with a socket timeout would leave the buffered reply
        reader unusable after a timeout, so readiness is polled instead.

        Args:
            timeout: How long to wait; zero waits forever

        Returns:
            True if a reply can be read now
        """
        if self._ftp is None or self._ftp.sock is None:
            raise FTPNotConnectedError("Waiting for a reply")
        sock = self._ftp.sock
        if isinstance(sock, ssl.SSLSocket) and sock.pending():
            return True
        try:
            readable, _, _ = select.select([sock], [], [], socket_timeout(timeout))
        except (OSError, ValueError) as e:
            raise self._fail(FTPSConnectionError(self._host, self._port, e))
        return bool(readable)

    def get_reply(self) -> Reply:
        """
        Read one complete reply from the control connection.

        Raises:
            FTPSTimeoutError: If no reply arrived within the control timeout
            FTPSConnectionError: If the connection failed or was closed
            ProtocolError: If the reply is malformed
        """
        if self._ftp is None or self._ftp.file is None:
            raise FTPNotConnectedError("Reading a reply")

        try:
            raw = self._ftp.getmultiline()
        except socket.timeout as e:
            raise self._fail(FTPSTimeoutError(
                self._host, self._port, "Reply", self._connect_timeout, e
            ))
        except EOFError as e:
            raise self._fail(FTPSConnectionError(
                self._host, self._port, e, message="Connection closed by server"
            ))
        except OSError as e:
            raise self._fail(FTPSConnectionError(self._host, self._port, e))
        except FTPLibError as e:
            raise ProtocolError("Unreadable reply", e)

        reply = parse_reply(raw)
        logger.debug(f"< {reply.text}")
        self._last_reply = reply
        self._last_activity = datetime.now()
        return reply

    def execute_command(self, verb, *args) -> Reply:
        """
        Send one command and read its reply.

        Only one command may be outstanding; concurrent callers are
        serialized here.

        Args:
            verb: Command keyword (string or FTPCmd)
            *args: Command arguments

        Returns:
            The server reply, whatever its category
        """
        with self._lock:
            self.send_command(verb, *args)
            return self.get_reply()

    @property
    def lock(self) -> threading.RLock:
        """Lock serializing command/reply exchanges."""
        return self._lock
