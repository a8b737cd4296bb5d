"""Command line entry point for the FTPS session client.

Wires settings, credentials and logging to an FTPSClient and runs one
sub-command (ls, get, put, mdtm, feat) per invocation.
"""

import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional

from src.config.credentials import CredentialManager
from src.config.paths import get_log_file_path
from src.config.settings import ClientSettings, SettingsManager
from src.ftps.client import FTPSClient
from src.ftps.connection import FTPSConnectionConfig
from src.ftps.exceptions import (
    FTPAuthenticationError,
    FTPSConnectionError,
    FTPSError,
    FTPSTimeoutError,
    NotFoundError,
    SecurityError,
)
from src.ftps.keepalive import KeepAlivePolicy
from src.utils.logging import setup_logging
from src.utils.validators import (
    validate_file_path,
    validate_host,
    validate_keep_alive,
    validate_port,
    validate_protection_level,
    validate_remote_path,
    validate_timeout,
)

logger = logging.getLogger("ftps_client.cli")


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ftps-client",
        description="FTP over TLS client (RFC 4217)",
    )
    parser.add_argument("--host", help="Server host (default: last used)")
    parser.add_argument("--port", type=int, help="Server port (default: 21, or 990 with --implicit)")
    parser.add_argument("--user", help="Username (default: last used)")
    parser.add_argument("--password", help="Password (default: keyring, then prompt)")
    parser.add_argument("--implicit", action="store_true", help="Use implicit TLS")
    parser.add_argument("--active", action="store_true", help="Use active data connections")
    parser.add_argument("--timeout", type=int, help="Connect timeout in seconds")
    parser.add_argument("--check-endpoint", action="store_true",
                        help="Require certificates to match the host")
    parser.add_argument("--verify", action="store_true", help="Verify the certificate chain")
    parser.add_argument("--cafile", help="PEM bundle of trusted certificates")
    parser.add_argument("--prot", choices=["C", "S", "E", "P"], help="Data protection level")
    parser.add_argument("--keep-alive", type=float, metavar="SECONDS",
                        help="NOOP interval during transfers (0 disables)")
    parser.add_argument("--keep-alive-policy", choices=[p.value for p in KeepAlivePolicy],
                        help="Handling of unanswered keep-alives")
    parser.add_argument("--save", action="store_true",
                        help="Remember host, user and password")
    parser.add_argument("--debug", action="store_true", help="Log control traffic")
    parser.add_argument("--log-file", type=Path, help="Write the log to a file")

    commands = parser.add_subparsers(dest="command", required=True)

    ls_parser = commands.add_parser("ls", help="List a remote directory")
    ls_parser.add_argument("path", nargs="?", default=None)
    ls_parser.add_argument("--names", action="store_true", help="Names only (NLST)")

    get_parser = commands.add_parser("get", help="Download a file")
    get_parser.add_argument("remote")
    get_parser.add_argument("local", nargs="?", help="Local file, '-' for stdout")

    put_parser = commands.add_parser("put", help="Upload a file")
    put_parser.add_argument("local")
    put_parser.add_argument("remote", nargs="?")

    mdtm_parser = commands.add_parser("mdtm", help="Show a file's modification time")
    mdtm_parser.add_argument("path")

    commands.add_parser("feat", help="Show server features")
    return parser


def apply_arguments(settings: ClientSettings, args: argparse.Namespace) -> ClientSettings:
    """Overlay command line options on the saved settings."""
    if args.implicit:
        settings.tls_mode = "implicit"
    if args.active:
        settings.passive_mode = False
    if args.timeout is not None:
        settings.timeout = args.timeout
    if args.check_endpoint:
        settings.endpoint_checking = True
    if args.verify:
        settings.verify_certificate = True
    if args.cafile:
        settings.cafile = args.cafile
    if args.prot:
        settings.protection_level = args.prot
    if args.keep_alive is not None:
        settings.keep_alive_timeout = args.keep_alive
    if args.keep_alive_policy:
        settings.keep_alive_policy = args.keep_alive_policy
    return settings


def validate_arguments(config: FTPSConnectionConfig, args: argparse.Namespace) -> Optional[str]:
    """
    Check user input before connecting.

    Returns:
        Error message, or None if everything is valid
    """
    checks = [
        validate_host(config.host),
        validate_port(config.port),
        validate_timeout(config.timeout),
        validate_keep_alive(config.keep_alive_timeout),
        validate_protection_level(config.protection_level),
    ]
    if args.command in ("get", "mdtm"):
        checks.append(validate_remote_path(args.remote if args.command == "get" else args.path))
    if args.command == "put":
        checks.append(validate_file_path(args.local))
    for is_valid, error in checks:
        if not is_valid:
            return error
    return None


def resolve_password(config: FTPSConnectionConfig, args: argparse.Namespace,
                     credentials: CredentialManager) -> str:
    """Password from the command line, the keyring or an interactive prompt."""
    if args.password is not None:
        return args.password
    saved = credentials.get_password(config.host, config.username)
    if saved is not None:
        return saved
    if config.username == "anonymous":
        return "anonymous@"
    return getpass.getpass(f"Password for {config.username}@{config.host}: ")


def run_command(client: FTPSClient, args: argparse.Namespace) -> int:
    """Execute the selected sub-command on a logged-in client."""
    if args.command == "ls":
        if args.names:
            for name in client.list_names(args.path):
                print(name)
        else:
            for entry in client.list_files(args.path):
                print(entry.raw_listing)
        return 0

    if args.command == "get":
        if args.local == "-":
            client.retrieve_file(args.remote, sys.stdout.buffer)
            return 0
        local = Path(args.local or Path(args.remote).name)
        with open(local, "wb") as sink:
            size = client.retrieve_file(args.remote, sink)
        logger.info(f"Downloaded {args.remote} to {local} ({size} bytes)")
        return 0

    if args.command == "put":
        remote = args.remote or Path(args.local).name
        with open(args.local, "rb") as source:
            size = client.store_file(remote, source)
        logger.info(f"Uploaded {args.local} to {remote} ({size} bytes)")
        return 0

    if args.command == "mdtm":
        print(client.mdtm_datetime(args.path).isoformat())
        return 0

    if args.command == "feat":
        for name, values in sorted(client.features.items()):
            print(" ".join([name] + values))
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def describe_error(error: FTPSError, config: FTPSConnectionConfig) -> str:
    """User-facing message for a failed run."""
    if isinstance(error, FTPAuthenticationError):
        return "Authentication failed. Please check your username and password."
    if isinstance(error, SecurityError):
        return f"Certificate rejected: {error}"
    if isinstance(error, FTPSTimeoutError):
        return f"Connection to {config.host}:{config.port} timed out."
    if isinstance(error, FTPSConnectionError):
        return f"Could not connect to {config.host}:{config.port}: {error}"
    if isinstance(error, NotFoundError):
        return str(error)
    return f"FTPS error: {error}"


def main(argv: Optional[List[str]] = None) -> int:
    """
    Command line entry point.

    Returns:
        Exit code (0 for success)
    """
    args = build_parser().parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        log_file=args.log_file or get_log_file_path(),
    )

    settings_manager = SettingsManager()
    settings = apply_arguments(settings_manager.load(), args)
    credentials = CredentialManager()

    try:
        config = settings.to_connection_config(args.host, args.port, args.user)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    error = validate_arguments(config, args)
    if error:
        print(error, file=sys.stderr)
        return 2

    password = resolve_password(config, args, credentials)
    client = FTPSClient.from_config(config)
    client.keep_alive_policy = KeepAlivePolicy(settings.keep_alive_policy)

    try:
        with client:
            client.open(config, password)
            if args.save:
                settings_manager.update(
                    last_host=config.host,
                    last_port=config.port,
                    last_username=config.username,
                )
                credentials.save_password(config.host, config.username, password)
            return run_command(client, args)
    except FTPSError as e:
        logger.debug(f"Command failed: {e!r}")
        print(describe_error(e, config), file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Local file error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
