"""Unit tests for ControlChannel.

Tests connection lifecycle in both TLS modes, state transitions, timeouts
and error handling against a mocked base engine and mocked sockets.
"""

import logging
import socket
import ssl
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from src.ftps.commands import FTPCmd, TLSMode
from src.ftps.connection import (
    ConnectionState,
    ControlChannel,
    FTPSConnectionConfig,
    build_ssl_context,
    socket_timeout,
    to_timedelta,
)
from src.ftps.exceptions import (
    DataConnectionError,
    FTPNotConnectedError,
    FTPSConnectionError,
    FTPSTimeoutError,
    ProtocolError,
    SecurityError,
)


def make_context():
    """SSL context mock whose wrap_socket returns SSLSocket-like mocks."""
    context = MagicMock()
    context.wrap_socket.side_effect = lambda sock, **kwargs: MagicMock(spec=ssl.SSLSocket)
    return context


class TestFTPSConnectionConfig:
    """Tests for FTPSConnectionConfig dataclass."""

    def test_default_values(self):
        """Test default configuration values."""
        config = FTPSConnectionConfig(host="ftp.example.com")
        assert config.port == 21
        assert config.username == "anonymous"
        assert config.tls_mode is TLSMode.EXPLICIT
        assert config.passive_mode is True
        assert config.endpoint_checking is False
        assert config.protection_level == "P"

    def test_implicit_default_port(self):
        """Test that implicit mode defaults to port 990."""
        config = FTPSConnectionConfig(host="ftp.example.com", tls_mode="implicit")
        assert config.tls_mode is TLSMode.IMPLICIT
        assert config.port == 990

    def test_empty_host_raises_error(self):
        """Test that empty host raises ValueError."""
        with pytest.raises(ValueError, match="Host is required"):
            FTPSConnectionConfig(host="")

    def test_invalid_port_raises_error(self):
        """Test that invalid port raises ValueError."""
        with pytest.raises(ValueError, match="Port must be between"):
            FTPSConnectionConfig(host="ftp.example.com", port=70000)

    def test_invalid_timeout_raises_error(self):
        """Test that invalid timeout raises ValueError."""
        with pytest.raises(ValueError, match="Timeout must be between"):
            FTPSConnectionConfig(host="ftp.example.com", timeout=500)

    def test_invalid_protection_level(self):
        """Test that unknown protection levels are rejected."""
        with pytest.raises(ValueError, match="protection level"):
            FTPSConnectionConfig(host="ftp.example.com", protection_level="X")

    def test_negative_keep_alive(self):
        """Test that negative durations are rejected."""
        with pytest.raises(ValueError, match="keep_alive_timeout"):
            FTPSConnectionConfig(host="ftp.example.com", keep_alive_timeout=-1)


class TestTimeouts:
    """Tests for timeout normalization and the disabled-is-zero contract."""

    @pytest.mark.parametrize("value,expected", [
        (None, timedelta(0)),
        (0, timedelta(0)),
        (5, timedelta(seconds=5)),
        (2.5, timedelta(seconds=2.5)),
        (timedelta(minutes=3), timedelta(minutes=3)),
    ])
    def test_to_timedelta(self, value, expected):
        """Test accepted timeout forms."""
        assert to_timedelta(value) == expected

    def test_negative_timeout(self):
        """Test that negative timeouts are rejected."""
        with pytest.raises(ValueError):
            to_timedelta(-1)

    def test_socket_timeout(self):
        """Test that zero maps to a blocking socket."""
        assert socket_timeout(timedelta(0)) is None
        assert socket_timeout(timedelta(seconds=4)) == 4.0

    @pytest.mark.parametrize("setter,getter", [
        ("set_control_keep_alive_timeout", "get_control_keep_alive_timeout"),
        ("set_control_keep_alive_reply_timeout", "get_control_keep_alive_reply_timeout"),
        ("set_data_timeout", "get_data_timeout"),
    ])
    def test_round_trip(self, setter, getter):
        """Test that disabled reads back as zero and durations round-trip."""
        channel = ControlChannel()

        getattr(channel, setter)(None)
        assert getattr(channel, getter)() == timedelta(0)

        getattr(channel, setter)(timedelta(seconds=42))
        assert getattr(channel, getter)() == timedelta(seconds=42)

    def test_defaults(self):
        """Test default timeouts."""
        channel = ControlChannel()
        assert channel.get_control_keep_alive_timeout() == timedelta(0)
        assert channel.get_control_keep_alive_reply_timeout() == timedelta(seconds=1)
        assert channel.get_data_timeout() == timedelta(0)


class TestBuildSSLContext:
    """Tests for build_ssl_context()."""

    def test_unverified_context(self):
        """Test the default context skips chain and hostname checks."""
        context = build_ssl_context()
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    def test_verified_context(self):
        """Test that verification leaves hostname matching to the endpoint check."""
        context = build_ssl_context(verify_certificate=True)
        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is False


class TestControlChannelConnect:
    """Tests for ControlChannel.connect() in both TLS modes."""

    def test_initial_state_is_disconnected(self):
        """Test that initial state is DISCONNECTED."""
        channel = ControlChannel()
        assert channel.state == ConnectionState.DISCONNECTED
        assert channel.is_connected is False
        assert channel.connection_id == 0
        assert channel.reply_code is None

    @patch("src.ftps.connection.FTP")
    @patch("src.ftps.connection.socket.create_connection")
    def test_explicit_connect(self, mock_create, mock_ftp_class):
        """Test greeting, AUTH TLS and handshake in explicit mode."""
        mock_ftp = MagicMock()
        mock_ftp.getmultiline.side_effect = ["220 Service ready", "234 AUTH TLS successful"]
        mock_ftp_class.return_value = mock_ftp
        context = make_context()

        channel = ControlChannel(TLSMode.EXPLICIT, context=context)
        reply = channel.connect("ftp.example.com")

        assert reply.code == 234
        assert channel.state == ConnectionState.CONNECTED
        assert channel.connection_id == 1
        assert channel.remote_port == 21
        mock_create.assert_called_once_with(("ftp.example.com", 21), timeout=30)
        mock_ftp.putcmd.assert_called_once_with("AUTH TLS")
        context.wrap_socket.assert_called_once_with(
            mock_create.return_value, server_hostname="ftp.example.com"
        )
        assert isinstance(mock_ftp.sock, ssl.SSLSocket)

    @patch("src.ftps.connection.FTP")
    @patch("src.ftps.connection.socket.create_connection")
    def test_implicit_connect(self, mock_create, mock_ftp_class):
        """Test that implicit mode handshakes before reading the greeting."""
        mock_ftp = MagicMock()
        mock_ftp.getmultiline.side_effect = ["220 Secure service ready"]
        mock_ftp_class.return_value = mock_ftp
        context = make_context()

        channel = ControlChannel(TLSMode.IMPLICIT, context=context)
        reply = channel.connect("ftp.example.com")

        assert reply.code == 220
        assert channel.remote_port == 990
        assert channel.connected_at is not None
        assert channel.last_activity >= channel.connected_at
        mock_create.assert_called_once_with(("ftp.example.com", 990), timeout=30)
        context.wrap_socket.assert_called_once()
        mock_ftp.putcmd.assert_not_called()

    @patch("src.ftps.connection.FTP")
    @patch("src.ftps.connection.socket.create_connection")
    def test_auth_refused(self, mock_create, mock_ftp_class):
        """Test that a refused AUTH fails the connection."""
        mock_ftp = MagicMock()
        mock_ftp.getmultiline.side_effect = ["220 Service ready", "504 AUTH not supported"]
        mock_ftp_class.return_value = mock_ftp

        channel = ControlChannel(context=make_context())
        with pytest.raises(ProtocolError):
            channel.connect("ftp.example.com")

        assert channel.state == ConnectionState.ERROR
        assert channel.reply_code == 504
        mock_ftp.close.assert_called_once()

    @patch("src.ftps.connection.socket.create_connection")
    def test_connect_socket_error(self, mock_create):
        """Test connection failure due to socket error."""
        mock_create.side_effect = ConnectionRefusedError("Connection refused")

        channel = ControlChannel()
        with pytest.raises(FTPSConnectionError) as exc_info:
            channel.connect("ftp.example.com", 2121)

        assert isinstance(exc_info.value, ConnectionError)
        assert exc_info.value.port == 2121
        assert channel.state == ConnectionState.ERROR
        assert channel.error_message is not None

    @patch("src.ftps.connection.socket.create_connection")
    def test_connect_timeout(self, mock_create):
        """Test connection timeout."""
        mock_create.side_effect = socket.timeout("timed out")

        channel = ControlChannel(connect_timeout=5)
        with pytest.raises(FTPSTimeoutError) as exc_info:
            channel.connect("ftp.example.com")

        assert exc_info.value.timeout == 5

    @patch("src.ftps.connection.FTP")
    @patch("src.ftps.connection.socket.create_connection")
    def test_handshake_certificate_error(self, mock_create, mock_ftp_class):
        """Test that a rejected certificate chain raises SecurityError."""
        mock_ftp = MagicMock()
        mock_ftp_class.return_value = mock_ftp
        context = MagicMock()
        context.wrap_socket.side_effect = ssl.SSLCertVerificationError("self signed")

        channel = ControlChannel(TLSMode.IMPLICIT, context=context)
        with pytest.raises(SecurityError):
            channel.connect("ftp.example.com")
        mock_create.return_value.close.assert_called_once()

    @patch("src.ftps.connection.identity.verify_peer")
    @patch("src.ftps.connection.FTP")
    @patch("src.ftps.connection.socket.create_connection")
    def test_endpoint_check_failure(self, mock_create, mock_ftp_class, mock_verify):
        """Test that an endpoint mismatch aborts the connection."""
        mock_ftp_class.return_value = MagicMock()
        mock_verify.side_effect = SecurityError("ftp.example.com")

        channel = ControlChannel(TLSMode.IMPLICIT, context=make_context())
        channel.endpoint_checking = True
        with pytest.raises(SecurityError):
            channel.connect("ftp.example.com")

        assert channel.state == ConnectionState.ERROR
        mock_verify.assert_called_once()

    @patch("src.ftps.connection.identity.verify_peer")
    @patch("src.ftps.connection.FTP")
    @patch("src.ftps.connection.socket.create_connection")
    def test_endpoint_check_skipped_when_disabled(self, mock_create, mock_ftp_class, mock_verify):
        """Test that the endpoint check only runs when enabled."""
        mock_ftp = MagicMock()
        mock_ftp.getmultiline.side_effect = ["220 Ready"]
        mock_ftp_class.return_value = mock_ftp

        channel = ControlChannel(TLSMode.IMPLICIT, context=make_context())
        channel.connect("ftp.example.com")

        mock_verify.assert_not_called()


@pytest.fixture
def connected():
    """A ControlChannel connected in implicit mode to a mocked engine."""
    with patch("src.ftps.connection.FTP") as mock_ftp_class, \
            patch("src.ftps.connection.socket.create_connection"):
        mock_ftp = MagicMock()
        mock_ftp.getmultiline.side_effect = ["220 Ready"]
        mock_ftp_class.return_value = mock_ftp
        context = make_context()
        channel = ControlChannel(TLSMode.IMPLICIT, context=context)
        channel.connect("ftp.example.com")
        yield channel, mock_ftp, context


class TestControlChannelCommands:
    """Tests for command/reply exchanges."""

    def test_send_command_requires_connection(self):
        """Test that commands need an open connection."""
        with pytest.raises(FTPNotConnectedError):
            ControlChannel().send_command(FTPCmd.NOOP)

    def test_execute_command(self, connected):
        """Test sending a command and reading its reply."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["200 Type set to I"]

        reply = channel.execute_command(FTPCmd.TYPE, "I")

        mock_ftp.putcmd.assert_called_with("TYPE I")
        assert reply.code == 200
        assert channel.reply_code == 200
        assert channel.reply_string == "200 Type set to I"

    def test_none_arguments_are_skipped(self, connected):
        """Test that a None argument sends the bare command."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["150 Here it comes"]

        channel.execute_command("list", None)

        mock_ftp.putcmd.assert_called_with("LIST")

    def test_password_masked_in_log(self, connected, caplog):
        """Test that PASS arguments never reach the log."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["230 Logged in"]

        with caplog.at_level(logging.DEBUG, logger="ftps_client"):
            channel.execute_command(FTPCmd.PASS, "hunter2")

        assert "hunter2" not in caplog.text
        assert "PASS ****" in caplog.text

    def test_connection_closed_by_server(self, connected):
        """Test that EOF tears the channel down."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = EOFError()

        with pytest.raises(FTPSConnectionError):
            channel.execute_command(FTPCmd.NOOP)

        assert channel.state == ConnectionState.ERROR
        with pytest.raises(FTPNotConnectedError):
            channel.execute_command(FTPCmd.NOOP)

    def test_reply_timeout(self, connected):
        """Test that a reply timeout raises FTPSTimeoutError."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = socket.timeout("timed out")

        with pytest.raises(FTPSTimeoutError):
            channel.execute_command(FTPCmd.NOOP)
        assert channel.state == ConnectionState.ERROR

    def test_malformed_reply(self, connected):
        """Test that garbage on the control connection is a protocol error."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["hello"]

        with pytest.raises(ProtocolError):
            channel.get_reply()


class TestLogin:
    """Tests for ControlChannel.login()."""

    def test_user_and_password(self, connected):
        """Test the USER / PASS sequence."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["331 Password required", "230 Logged in"]

        assert channel.login("alice", "secret") is True
        assert channel.reply_code == 230

    def test_user_only(self, connected):
        """Test a server that needs no password."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["230 Logged in"]

        assert channel.login("anonymous", "") is True
        assert mock_ftp.putcmd.call_count == 1

    def test_wrong_password(self, connected):
        """Test a refused login."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["331 Password required", "530 Login incorrect"]

        assert channel.login("alice", "wrong") is False
        assert channel.reply_code == 530
        assert channel.is_connected is True

    def test_account(self, connected):
        """Test that ACCT is sent when the server asks for it."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = [
            "331 Password required", "332 Need account", "230 Logged in",
        ]

        assert channel.login("alice", "secret", account="billing") is True
        mock_ftp.putcmd.assert_called_with("ACCT billing")


class TestDisconnect:
    """Tests for disconnect() and abort()."""

    def test_disconnect_sends_quit(self, connected):
        """Test graceful disconnect."""
        channel, mock_ftp, _ = connected
        mock_ftp.getmultiline.side_effect = ["221 Goodbye"]

        channel.disconnect()

        mock_ftp.putcmd.assert_called_with("QUIT")
        mock_ftp.close.assert_called_once()
        assert channel.state == ConnectionState.DISCONNECTED
        assert channel.connected_at is None

    def test_disconnect_ignores_quit_failure(self, connected):
        """Test that a dead connection still disconnects cleanly."""
        channel, mock_ftp, _ = connected
        mock_ftp.putcmd.side_effect = BrokenPipeError()

        channel.disconnect()

        assert channel.state == ConnectionState.DISCONNECTED

    def test_abort_shuts_socket_down(self, connected):
        """Test that abort unblocks readers by shutting the socket down."""
        channel, mock_ftp, _ = connected
        channel.abort()
        mock_ftp.sock.shutdown.assert_called_once_with(socket.SHUT_RDWR)


class TestWrapDataSocket:
    """Tests for securing data sockets with the control session."""

    def test_reuses_control_session(self, connected):
        """Test that the control TLS session is offered for resumption."""
        channel, mock_ftp, context = connected
        data_sock = MagicMock()

        channel.wrap_data_socket(data_sock)

        context.wrap_socket.assert_called_with(
            data_sock, server_hostname="ftp.example.com", session=mock_ftp.sock.session
        )

    def test_falls_back_without_session(self, connected):
        """Test a fresh handshake when the session cannot be reused."""
        channel, _, context = connected
        data_tls = MagicMock(spec=ssl.SSLSocket)
        context.wrap_socket.side_effect = [ValueError("different context"), data_tls]

        assert channel.wrap_data_socket(MagicMock()) is data_tls

    def test_certificate_error(self, connected):
        """Test that a certificate failure is reported as a security error."""
        channel, _, context = connected
        data_sock = MagicMock()
        context.wrap_socket.side_effect = ssl.SSLCertVerificationError("bad cert")

        with pytest.raises(SecurityError) as exc_info:
            channel.wrap_data_socket(data_sock)

        assert exc_info.value.channel == "data"
        data_sock.close.assert_called_once()

    def test_handshake_failure(self, connected):
        """Test that other TLS failures are data connection errors."""
        channel, _, context = connected
        context.wrap_socket.side_effect = ssl.SSLError("handshake failure")

        with pytest.raises(DataConnectionError):
            channel.wrap_data_socket(MagicMock())

    @patch("src.ftps.connection.identity.verify_peer")
    def test_endpoint_check_on_data(self, mock_verify, connected):
        """Test that the data certificate is checked when enabled."""
        channel, _, _ = connected
        channel.endpoint_checking = True

        tls_sock = channel.wrap_data_socket(MagicMock())

        mock_verify.assert_called_once_with(tls_sock, "ftp.example.com", "data")
