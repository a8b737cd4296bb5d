"""FTPS client orchestrating control, protection and data channels.

FTPSClient composes the ControlChannel with the protection negotiator,
the data channel factory, the keep-alive monitor, the feature registry and
the timestamp query. Listings and transfers open a fresh data connection
per call, so they can be repeated within one control connection.
"""

import logging
import ssl
from datetime import datetime, timedelta
from ftplib import Error as FTPLibError, parse257
from typing import BinaryIO, Callable, Dict, List, Optional, Union

from src.ftps.commands import FileType, FTPCmd, TLSMode, TransferIntent
from src.ftps.connection import (
    ConnectionState,
    ControlChannel,
    FTPSConnectionConfig,
    TimeoutValue,
    build_ssl_context,
)
from src.ftps.data_channel import DataChannelFactory, DataConnection
from src.ftps.exceptions import (
    DataConnectionError,
    FTPAuthenticationError,
    FTPSError,
    NotFoundError,
    ProtocolError,
)
from src.ftps.features import FeatureRegistry, FeatureToken
from src.ftps.keepalive import KeepAlivePolicy, KeepAliveStats, apply_policy
from src.ftps.listing import RemoteFile, parse_listing
from src.ftps.protection import ProtectionLevel, SecureDataNegotiator
from src.ftps.reply import Reply
from src.ftps.timestamps import ModificationTime, TimestampQuery

logger = logging.getLogger("ftps_client.client")

# Either a binary stream or a callback receiving each block
Sink = Union[BinaryIO, Callable[[bytes], object]]


class FTPSClient:
    """FTP over TLS client for one server session."""

    def __init__(
        self,
        tls_mode: TLSMode = TLSMode.EXPLICIT,
        context: Optional[ssl.SSLContext] = None,
        auth_value: str = "TLS",
        connect_timeout: float = 30,
        passive_mode: bool = True,
        auto_protect: bool = True,
        protection_level: Union[str, ProtectionLevel] = ProtectionLevel.PRIVATE,
        keep_alive_policy: KeepAlivePolicy = KeepAlivePolicy.WARN,
        encoding: str = "utf-8",
    ):
        """
        Initialize the client.

        Args:
            tls_mode: Implicit or explicit TLS; fixed for the client lifetime
            context: SSL context shared by control and data connections
            auth_value: AUTH argument in explicit mode
            connect_timeout: Seconds allowed for connect and each reply
            passive_mode: Use passive data connections
            auto_protect: Negotiate PBSZ/PROT before the first data
                connection if the caller did not
            protection_level: Level used by auto protection
            keep_alive_policy: How a degraded control connection is reported
            encoding: Control connection and listing encoding
        """
        self._encoding = encoding
        self._control = ControlChannel(
            tls_mode=tls_mode,
            context=context,
            auth_value=auth_value,
            connect_timeout=connect_timeout,
            encoding=encoding,
        )
        self._negotiator = SecureDataNegotiator(
            self._control, auto_protect=auto_protect, default_level=protection_level
        )
        self._data = DataChannelFactory(self._control, self._negotiator, passive_mode)
        self._features = FeatureRegistry(self._control)
        self._timestamps = TimestampQuery(self._control)
        self.keep_alive_policy = KeepAlivePolicy(keep_alive_policy)
        self._control_degraded = False
        self._last_keep_alive: Optional[KeepAliveStats] = None

    @classmethod
    def from_config(cls, config: FTPSConnectionConfig) -> "FTPSClient":
        """Create a client configured from an FTPSConnectionConfig."""
        client = cls(
            tls_mode=config.tls_mode,
            context=build_ssl_context(config.verify_certificate, config.cafile),
            auth_value=config.auth_value,
            connect_timeout=config.timeout,
            passive_mode=config.passive_mode,
            protection_level=config.protection_level,
        )
        client.endpoint_checking = config.endpoint_checking
        client.set_control_keep_alive_timeout(config.keep_alive_timeout)
        client.set_control_keep_alive_reply_timeout(config.keep_alive_reply_timeout)
        client.set_data_timeout(config.data_timeout)
        return client

    # -- configuration -------------------------------------------------

    @property
    def tls_mode(self) -> TLSMode:
        return self._control.tls_mode

    @property
    def endpoint_checking(self) -> bool:
        """Whether control and data certificates must match the host."""
        return self._control.endpoint_checking

    @endpoint_checking.setter
    def endpoint_checking(self, enabled: bool) -> None:
        self._control.endpoint_checking = enabled

    @property
    def passive_mode(self) -> bool:
        return self._data.passive_mode

    @passive_mode.setter
    def passive_mode(self, enabled: bool) -> None:
        self._data.passive_mode = bool(enabled)

    def set_control_keep_alive_timeout(self, value: TimeoutValue) -> None:
        self._control.set_control_keep_alive_timeout(value)

    def get_control_keep_alive_timeout(self) -> timedelta:
        return self._control.get_control_keep_alive_timeout()

    def set_control_keep_alive_reply_timeout(self, value: TimeoutValue) -> None:
        self._control.set_control_keep_alive_reply_timeout(value)

    def get_control_keep_alive_reply_timeout(self) -> timedelta:
        return self._control.get_control_keep_alive_reply_timeout()

    def set_data_timeout(self, value: TimeoutValue) -> None:
        self._control.set_data_timeout(value)

    def get_data_timeout(self) -> timedelta:
        return self._control.get_data_timeout()

    # -- state ---------------------------------------------------------

    @property
    def control(self) -> ControlChannel:
        return self._control

    @property
    def state(self) -> ConnectionState:
        return self._control.state

    @property
    def is_connected(self) -> bool:
        return self._control.is_connected

    @property
    def reply_code(self) -> Optional[int]:
        return self._control.reply_code

    @property
    def reply_string(self) -> Optional[str]:
        return self._control.reply_string

    @property
    def remote_port(self) -> Optional[int]:
        return self._control.remote_port

    @property
    def protection_level(self) -> ProtectionLevel:
        """Data channel protection currently in effect."""
        return self._negotiator.protection_level

    @property
    def control_degraded(self) -> bool:
        """True if keep-alives went unanswered during a past transfer."""
        return self._control_degraded

    @property
    def last_keep_alive(self) -> Optional[KeepAliveStats]:
        """Keep-alive counters of the most recent transfer."""
        return self._last_keep_alive

    # -- session -------------------------------------------------------

    def connect(self, host: str, port: Optional[int] = None) -> Reply:
        """Open and secure the control connection (see ControlChannel.connect)."""
        self._control_degraded = False
        return self._control.connect(host, port)

    def login(self, user: str, password: str, account: Optional[str] = None) -> bool:
        """Authenticate; returns False if the server refused. Never retries."""
        success = self._control.login(user, password, account)
        if success:
            logger.info(f"Logged in as '{user}'")
        else:
            logger.warning(f"Login refused for '{user}': {self._control.reply_code}")
        return success

    def open(self, config: FTPSConnectionConfig, password: str = "") -> None:
        """
        Connect, log in and secure the data channel in one step.

        Args:
            config: Connection configuration
            password: FTP password

        Raises:
            FTPSConnectionError: If connection fails
            FTPAuthenticationError: If login fails
            ProtocolError: If protection cannot be negotiated
        """
        self.connect(config.host, config.port)
        if not self.login(config.username, password):
            reply = self._control.last_reply
            self.disconnect()
            raise FTPAuthenticationError(
                config.username,
                reply_code=reply.code if reply else None,
                reply_text=reply.text if reply else None,
            )
        self.set_file_type(FileType.BINARY)
        self.exec_pbsz(0)
        self.exec_prot(config.protection_level)

    def logout(self) -> bool:
        """Send QUIT; the connection stays open until disconnect()."""
        return self._control.execute_command(FTPCmd.QUIT).is_completion

    def disconnect(self) -> None:
        """Close the control connection; caches die with it."""
        self._control.disconnect()
        self._features.reset()
        logger.info("Disconnected")

    def execute_command(self, verb, *args) -> Reply:
        """Send an arbitrary command and return its reply."""
        return self._control.execute_command(verb, *args)

    def set_file_type(self, file_type: Union[FileType, str]) -> bool:
        """Set the representation type (TYPE A or TYPE I)."""
        file_type = FileType(file_type)
        return self._control.execute_command(FTPCmd.TYPE, file_type.value).is_completion

    def exec_pbsz(self, size: int) -> int:
        """Declare the protection buffer size (0 for TLS)."""
        return self._negotiator.exec_pbsz(size)

    def exec_prot(self, level: Union[str, ProtectionLevel]) -> ProtectionLevel:
        """Set the data channel protection level ("C" / "P" or names)."""
        return self._negotiator.exec_prot(level)

    def pwd(self) -> str:
        """Current remote working directory."""
        reply = self._control.execute_command(FTPCmd.PWD)
        try:
            return parse257(reply.text)
        except FTPLibError as e:
            raise ProtocolError("Unexpected reply to PWD", e, reply.code, reply.text)

    def cwd(self, pathname: str) -> bool:
        """Change the remote working directory."""
        return self._control.execute_command(FTPCmd.CWD, pathname).is_completion

    # -- capabilities --------------------------------------------------

    @property
    def features(self) -> Dict[str, List[str]]:
        """All advertised features and their parameters."""
        return self._features.features

    def has_feature(self, token: FeatureToken) -> bool:
        """True if the server advertises the feature (FEAT is cached)."""
        return self._features.has_feature(token)

    def feature_values(self, token: FeatureToken) -> Optional[List[str]]:
        return self._features.feature_values(token)

    def feature_value(self, token: FeatureToken) -> Optional[str]:
        return self._features.feature_value(token)

    # -- timestamps ----------------------------------------------------

    def query_modification_time(self, pathname: str) -> ModificationTime:
        """Modification time of a remote file (MDTM)."""
        return self._timestamps.query_modification_time(pathname)

    def mdtm_datetime(self, pathname: str) -> datetime:
        """Modification time as an aware UTC datetime."""
        return self.query_modification_time(pathname).timestamp

    def mdtm_instant(self, pathname: str) -> float:
        """Modification time as seconds since the POSIX epoch."""
        return self.query_modification_time(pathname).instant

    def mdtm_file(self, pathname: str) -> RemoteFile:
        """Modification time attached to a RemoteFile record."""
        return self.query_modification_time(pathname).to_remote_file()

    # -- data operations -----------------------------------------------

    def list_files(self, pathname: Optional[str] = None) -> List[RemoteFile]:
        """
        List a directory (LIST) and parse the entries.

        Args:
            pathname: Directory or file; None or "" lists the working
                directory

        Returns:
            Parsed entries (possibly empty)

        Raises:
            NotFoundError: If the path does not exist
            DataConnectionError: If the listing could not be transferred
        """
        data = self._transfer(TransferIntent.LIST, pathname or None, lambda c: c.read_all())
        return parse_listing(data.decode(self._encoding, errors="replace"))

    def list_names(self, pathname: Optional[str] = None) -> List[str]:
        """List entry names only (NLST)."""
        data = self._transfer(TransferIntent.NAME_LIST, pathname or None, lambda c: c.read_all())
        text = data.decode(self._encoding, errors="replace")
        return [line for line in text.splitlines() if line.strip()]

    def retrieve_file(self, pathname: str, sink: Sink, rest: Optional[int] = None) -> int:
        """
        Download a file (RETR).

        Args:
            pathname: Remote file
            sink: Binary stream or callable receiving each block
            rest: Byte offset to restart from

        Returns:
            Number of bytes received

        Raises:
            NotFoundError: If the file does not exist
            DataConnectionError: If the transfer failed
        """
        write = sink if callable(sink) else sink.write

        def receive(connection: DataConnection) -> int:
            for block in connection.iter_blocks():
                write(block)
            return connection.bytes_transferred

        return self._transfer(TransferIntent.RETRIEVE, pathname, receive, rest)

    def store_file(self, pathname: str, source: BinaryIO) -> int:
        """
        Upload a file (STOR).

        Args:
            pathname: Remote file
            source: Binary stream to send

        Returns:
            Number of bytes sent
        """
        return self._transfer(
            TransferIntent.STORE, pathname, lambda c: c.write_from(source)
        )

    def _transfer(self, intent: TransferIntent, pathname: Optional[str],
                  operation: Callable[[DataConnection], object], rest: Optional[int] = None):
        """Open a data connection, run operation on it, then complete the exchange."""
        connection = self._data.open_data_connection(intent, pathname, rest)
        try:
            with connection:
                result = operation(connection)
        except Exception:
            self._abandon(connection)
            raise

        reply = self._data.complete_transfer(connection)
        self._last_keep_alive = connection.monitor.stats
        if not reply.is_completion:
            if reply.is_permanent_negative and intent.is_read_only:
                raise NotFoundError(
                    pathname, intent.name.lower().replace("_", " "),
                    reply_code=reply.code, reply_text=reply.text,
                )
            raise DataConnectionError(
                f"{intent.value} {pathname or ''} failed".strip(),
                reply_code=reply.code, reply_text=reply.text,
            )

        if connection.monitor.stats.degraded:
            self._control_degraded = True
        apply_policy(connection.monitor.stats, self.keep_alive_policy)
        return result

    def _abandon(self, connection: DataConnection) -> None:
        """Read the reply to a failed transfer so the control stays in sync."""
        try:
            reply = self._data.complete_transfer(connection)
            logger.debug(f"Failed transfer ended with {reply.code}")
        except FTPSError as e:
            logger.debug(f"No reply after failed transfer: {e}")
        self._last_keep_alive = connection.monitor.stats

    def __enter__(self) -> "FTPSClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._control.state is not ConnectionState.DISCONNECTED:
            self.disconnect()
