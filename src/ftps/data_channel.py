"""Per-operation data connections for listings and transfers.

Provides DataConnection, a short-lived socket that is closed on every exit
path, and DataChannelFactory, which negotiates passive or active mode,
sends the transfer command and, for a protected session, secures the
socket by resuming the control connection's TLS session.
"""

import logging
import socket
import ssl
import threading
from ftplib import Error as FTPLibError, parse227, parse229
from typing import BinaryIO, Iterator, Optional, Tuple, Union

from src.ftps.commands import DataDirection, FTPCmd, TransferIntent
from src.ftps.connection import ControlChannel, socket_timeout
from src.ftps.exceptions import (
    DataConnectionError,
    FTPSError,
    NotFoundError,
    ProtocolError,
)
from src.ftps.keepalive import KeepAliveMonitor
from src.ftps.protection import SecureDataNegotiator
from src.ftps.reply import Reply

logger = logging.getLogger("ftps_client.data")

# Block size for data transfers (8KB)
BLOCK_SIZE = 8192

FILE_UNAVAILABLE = 550

# Upper bound on waiting for the peer's close_notify
TLS_SHUTDOWN_TIMEOUT = 5


class DataConnection:
    """
    One open data connection.

    Usage:
        with factory.open_data_connection(TransferIntent.RETRIEVE, "/a.txt") as conn:
            for block in conn.iter_blocks():
                sink.write(block)
        reply = factory.complete_transfer(conn)
    """

    def __init__(
        self,
        sock: socket.socket,
        intent: TransferIntent,
        pathname: Optional[str],
        direction: DataDirection,
        monitor: KeepAliveMonitor,
        endpoint_checking: bool = False,
    ):
        self._sock = sock
        self._lock = threading.Lock()
        self._closed = False
        self._completed = False
        self.intent = intent
        self.pathname = pathname
        self.direction = direction
        self.monitor = monitor
        self.endpoint_checking = endpoint_checking
        self.bytes_transferred = 0
        self.local_address = sock.getsockname()
        self.remote_address = sock.getpeername()
        # Read now; the TLS object is gone once the socket is unwrapped
        self._session_reused = isinstance(sock, ssl.SSLSocket) and bool(sock.session_reused)

    @property
    def is_protected(self) -> bool:
        """True if the data connection runs over TLS."""
        return isinstance(self._sock, ssl.SSLSocket)

    @property
    def session_reused(self) -> bool:
        """True if the TLS handshake resumed the control session."""
        return self._session_reused

    @property
    def is_closed(self) -> bool:
        return self._closed

    def iter_blocks(self, block_size: int = BLOCK_SIZE) -> Iterator[bytes]:
        """
        Read the connection to end of stream.

        Raises:
            DataConnectionError: On timeout, reset, or if closed meanwhile
        """
        try:
            while True:
                block = self._sock.recv(block_size)
                if not block:
                    self._completed = True
                    return
                self.bytes_transferred += len(block)
                self.monitor.tick()
                yield block
        except socket.timeout as e:
            raise DataConnectionError("Data connection timed out", e)
        except OSError as e:
            reason = "Data connection closed" if self._closed else "Data connection failed"
            raise DataConnectionError(reason, e)

    def read_all(self) -> bytes:
        """Read and return everything the server sends."""
        return b"".join(self.iter_blocks())

    def write_from(self, source: BinaryIO, block_size: int = BLOCK_SIZE) -> int:
        """
        Send a file-like object to the server.

        Args:
            source: Binary stream to read from
            block_size: Bytes per send

        Returns:
            Number of bytes sent
        """
        try:
            while True:
                block = source.read(block_size)
                if not block:
                    break
                self._sock.sendall(block)
                self.bytes_transferred += len(block)
                self.monitor.tick()
        except socket.timeout as e:
            raise DataConnectionError("Data connection timed out", e)
        except OSError as e:
            reason = "Data connection closed" if self._closed else "Data connection failed"
            raise DataConnectionError(reason, e)
        self._completed = True
        return self.bytes_transferred

    def close(self) -> None:
        """
        Close the connection; safe to call twice and from another thread.

        A completed TLS transfer is shut down with close_notify first so
        the server sees a clean end of data. Closing an in-flight transfer
        from another thread shuts the socket down, unblocking its reader.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self.monitor.cancel()
        sock = self._sock
        try:
            if self._completed and isinstance(sock, ssl.SSLSocket):
                try:
                    if sock.gettimeout() is None:
                        sock.settimeout(TLS_SHUTDOWN_TIMEOUT)
                    sock = sock.unwrap()
                except (ssl.SSLError, OSError, ValueError) as e:
                    logger.debug(f"TLS shutdown on data connection failed: {e}")
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        finally:
            sock.close()
            self._sock.close()
        logger.debug(
            f"Closed data connection for {self.intent.value} "
            f"({self.bytes_transferred} bytes)"
        )

    def __enter__(self) -> "DataConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class DataChannelFactory:
    """Opens data connections bound to a control channel."""

    def __init__(
        self,
        control: ControlChannel,
        negotiator: SecureDataNegotiator,
        passive_mode: bool = True,
    ):
        """
        Initialize the factory.

        Args:
            control: Control channel used for negotiation
            negotiator: Protection state; consulted before every connection
            passive_mode: Passive (client connects) or active (server connects)
        """
        self._control = control
        self._negotiator = negotiator
        self.passive_mode = passive_mode

    @property
    def direction(self) -> DataDirection:
        return DataDirection.PASSIVE if self.passive_mode else DataDirection.ACTIVE

    def open_data_connection(
        self,
        intent: Union[TransferIntent, str],
        pathname: Optional[str] = None,
        rest: Optional[int] = None,
    ) -> DataConnection:
        """
        Open a data connection for one operation.

        Args:
            intent: What the connection is for (decides the command sent)
            pathname: Command argument; None sends the bare command
            rest: Restart offset sent with REST before the command

        Returns:
            Open DataConnection; the caller must close it and then call
            complete_transfer()

        Raises:
            ProtocolError: If protection could not be negotiated
            NotFoundError: If the server reports the path unavailable
            SecurityError: If the data peer certificate is rejected
            DataConnectionError: If the connection cannot be established
        """
        intent = TransferIntent(intent)
        self._negotiator.ensure_session()
        protected = self._negotiator.protection_level.is_encrypted
        data_timeout = socket_timeout(self._control.get_data_timeout())

        with self._control.lock:
            listener: Optional[socket.socket] = None
            sock: Optional[socket.socket] = None
            transfer_started = False
            try:
                if self.passive_mode:
                    sock = self._connect_passive(data_timeout)
                else:
                    listener = self._listen_active(data_timeout)

                if rest is not None:
                    reply = self._control.execute_command(FTPCmd.REST, rest)
                    if not reply.is_intermediate:
                        raise DataConnectionError(
                            f"Server refused restart at {rest}",
                            reply_code=reply.code, reply_text=reply.text,
                        )

                reply = self._control.execute_command(intent.value, pathname)
                if not reply.is_preliminary:
                    raise self._refusal(intent, pathname, reply)
                transfer_started = True

                if listener is not None:
                    try:
                        sock, _ = listener.accept()
                    except OSError as e:
                        raise DataConnectionError("Server did not open the data connection", e)
                sock.settimeout(data_timeout)

                if protected:
                    sock = self._control.wrap_data_socket(sock)
            except Exception:
                if sock is not None:
                    sock.close()
                if transfer_started:
                    self._discard_completion()
                raise
            finally:
                if listener is not None:
                    listener.close()

        monitor = KeepAliveMonitor(
            self._control,
            self._control.get_control_keep_alive_timeout(),
            self._control.get_control_keep_alive_reply_timeout(),
        )
        connection = DataConnection(
            sock,
            intent,
            pathname,
            self.direction,
            monitor,
            endpoint_checking=self._control.endpoint_checking,
        )
        logger.debug(
            f"Opened {self.direction.value} data connection for {intent.value} "
            f"{pathname or ''} (protected={protected}, "
            f"session_reused={connection.session_reused})"
        )
        return connection

    def complete_transfer(self, connection: DataConnection) -> Reply:
        """
        Close a data connection and read the transfer completion reply.

        Returns:
            The completion reply (negative if the transfer failed)
        """
        connection.close()
        return connection.monitor.finish()

    def _discard_completion(self) -> None:
        """Consume the reply to a transfer that was abandoned after 1xx."""
        try:
            reply = self._control.get_reply()
            logger.debug(f"Abandoned transfer ended with {reply.code}")
        except FTPSError as e:
            logger.debug(f"No reply to abandoned transfer: {e}")

    def _connect_passive(self, timeout: Optional[float]) -> socket.socket:
        """Enter passive mode and connect to the advertised port."""
        host, port = self._passive_address()
        try:
            return socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise DataConnectionError(f"Failed to open data connection to {host}:{port}", e)

    def _passive_address(self) -> Tuple[str, int]:
        peer = self._control.ftp.sock.getpeername()
        try:
            if self._control.ftp.af == socket.AF_INET:
                reply = self._control.execute_command(FTPCmd.PASV)
                self._require_completion(reply, "PASV")
                _, port = parse227(reply.text)
                # The advertised address is ignored; NATed servers get it wrong
                return peer[0], port
            reply = self._control.execute_command(FTPCmd.EPSV)
            self._require_completion(reply, "EPSV")
            return parse229(reply.text, peer)
        except FTPLibError as e:
            raise ProtocolError("Unparsable passive mode reply", e)

    def _listen_active(self, timeout: Optional[float]) -> socket.socket:
        """Listen locally and announce the address with PORT / EPRT."""
        control_sock = self._control.ftp.sock
        family = control_sock.family
        local_host = control_sock.getsockname()[0]
        try:
            listener = socket.create_server((local_host, 0), family=family, backlog=1)
        except OSError as e:
            raise DataConnectionError("Failed to listen for active data connection", e)
        listener.settimeout(timeout)
        port = listener.getsockname()[1]

        try:
            if family == socket.AF_INET:
                numbers = local_host.split(".") + [str(port >> 8), str(port & 0xFF)]
                reply = self._control.execute_command(FTPCmd.PORT, ",".join(numbers))
                self._require_completion(reply, "PORT")
            else:
                reply = self._control.execute_command(FTPCmd.EPRT, f"|2|{local_host}|{port}|")
                self._require_completion(reply, "EPRT")
        except FTPSError:
            listener.close()
            raise
        return listener

    @staticmethod
    def _require_completion(reply: Reply, command: str) -> None:
        if not reply.is_completion:
            raise DataConnectionError(
                f"{command} rejected", reply_code=reply.code, reply_text=reply.text
            )

    @staticmethod
    def _refusal(intent: TransferIntent, pathname: Optional[str], reply: Reply) -> FTPSError:
        """Map a refused transfer command to an exception."""
        if reply.code == FILE_UNAVAILABLE and intent.is_read_only:
            return NotFoundError(
                pathname, intent.name.lower().replace("_", " "),
                reply_code=reply.code, reply_text=reply.text,
            )
        return DataConnectionError(
            f"{intent.value} {pathname or ''} refused".strip(),
            reply_code=reply.code, reply_text=reply.text,
        )
