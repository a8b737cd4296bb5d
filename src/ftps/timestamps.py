"""File modification time queries (MDTM, RFC 3659 section 3).

One MDTM reply is parsed once into an aware UTC datetime; every other
representation is derived from that value so they always denote the same
instant.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from src.ftps.commands import FTPCmd
from src.ftps.connection import ControlChannel
from src.ftps.exceptions import NotFoundError, ProtocolError
from src.ftps.listing import RemoteFile, RemoteFileType
from src.ftps.reply import FILE_STATUS, Reply

logger = logging.getLogger("ftps_client.timestamps")

# YYYYMMDDHHMMSS with an optional fraction of a second
MDTM_PATTERN = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})"
    r"(?P<hour>\d{2})(?P<minute>\d{2})(?P<second>\d{2})"
    r"(?:\.(?P<fraction>\d{1,6}))?$"
)


@dataclass(frozen=True)
class ModificationTime:
    """A file modification instant in several representations."""
    pathname: str
    timestamp: datetime
    raw_reply: str

    @property
    def instant(self) -> float:
        """Seconds since the POSIX epoch."""
        return self.timestamp.timestamp()

    def to_remote_file(self) -> RemoteFile:
        """File metadata record carrying this timestamp."""
        return RemoteFile(
            name=self.pathname,
            type=RemoteFileType.FILE,
            timestamp=self.timestamp,
            raw_listing=self.raw_reply,
        )


def parse_mdtm_value(value: str) -> datetime:
    """
    Parse an MDTM time-val.

    Args:
        value: e.g. "20240131235959" or "20240131235959.123"

    Returns:
        Aware datetime in UTC

    Raises:
        ProtocolError: If the value is not a valid time-val
    """
    match = MDTM_PATTERN.match(value.strip())
    if not match:
        raise ProtocolError(f"Unparsable modification time: {value!r}")

    fraction = match.group("fraction") or ""
    microsecond = int(fraction.ljust(6, "0")) if fraction else 0
    try:
        return datetime(
            int(match.group("year")),
            int(match.group("month")),
            int(match.group("day")),
            int(match.group("hour")),
            int(match.group("minute")),
            int(match.group("second")),
            microsecond,
            tzinfo=timezone.utc,
        )
    except ValueError as e:
        raise ProtocolError(f"Invalid modification time: {value!r}", e)


class TimestampQuery:
    """Sends MDTM on a control channel and parses the reply."""

    def __init__(self, control: ControlChannel):
        self._control = control

    def query_modification_time(self, pathname: str) -> ModificationTime:
        """
        Ask the server for the modification time of a file.

        Args:
            pathname: Remote path

        Returns:
            ModificationTime for the path

        Raises:
            NotFoundError: On a permanent negative reply (e.g. missing path)
            ProtocolError: On any other unexpected or unparsable reply
        """
        reply = self._control.execute_command(FTPCmd.MDTM, pathname)
        return self.parse_reply(pathname, reply)

    @staticmethod
    def parse_reply(pathname: str, reply: Reply) -> ModificationTime:
        """Turn an MDTM reply into a ModificationTime."""
        if reply.is_permanent_negative:
            raise NotFoundError(
                pathname, "get modification time of",
                reply_code=reply.code, reply_text=reply.text,
            )
        if reply.code != FILE_STATUS:
            raise ProtocolError(
                f"Unexpected reply to MDTM {pathname}",
                reply_code=reply.code, reply_text=reply.text,
            )

        stamp = parse_mdtm_value(reply.message)
        logger.debug(f"MDTM {pathname}: {stamp.isoformat()}")
        return ModificationTime(pathname=pathname, timestamp=stamp, raw_reply=reply.text)
