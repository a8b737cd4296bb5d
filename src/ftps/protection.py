"""Data channel protection negotiation (PBSZ / PROT, RFC 4217 section 8-9).

The protection level is authoritative on the server, so every call sends
its command again instead of trusting client-side state.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from src.ftps.commands import FTPCmd
from src.ftps.connection import ControlChannel
from src.ftps.exceptions import ProtocolError

logger = logging.getLogger("ftps_client.protection")

MAX_PBSZ = 2 ** 32 - 1

PBSZ_REPLY_PATTERN = re.compile(r"PBSZ=(\d+)", re.IGNORECASE)


class ProtectionLevel(Enum):
    """Data channel protection levels and their PROT letters."""
    CLEAR = "C"
    SAFE = "S"
    CONFIDENTIAL = "E"
    PRIVATE = "P"

    @classmethod
    def parse(cls, value: Union[str, "ProtectionLevel"]) -> "ProtectionLevel":
        """Accept a PROT letter ("P") or a level name ("private")."""
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for level in cls:
            if text.upper() == level.value or text.lower() == level.name.lower():
                return level
        raise ValueError(f"Unknown protection level: {value!r}")

    @property
    def is_encrypted(self) -> bool:
        """True if data connections must be wrapped in TLS."""
        return self is not ProtectionLevel.CLEAR


@dataclass
class SecureDataSession:
    """Negotiated data channel protection for one control connection."""
    connection_id: int
    buffer_size: Optional[int] = None
    protection_level: Optional[ProtectionLevel] = None

    @property
    def is_established(self) -> bool:
        """True once both PBSZ and PROT succeeded."""
        return self.buffer_size is not None and self.protection_level is not None


class SecureDataNegotiator:
    """Runs PBSZ and PROT on a control channel and tracks the result."""

    def __init__(self, control: ControlChannel, auto_protect: bool = True,
                 default_level: Union[str, ProtectionLevel] = ProtectionLevel.PRIVATE):
        """
        Initialize the negotiator.

        Args:
            control: Control channel the commands are sent on
            auto_protect: Negotiate PBSZ 0 / default_level before the first
                data connection if the caller did not
            default_level: Level used by auto protection
        """
        self._control = control
        self._auto_protect = auto_protect
        self._default_level = ProtectionLevel.parse(default_level)
        self._session: Optional[SecureDataSession] = None

    @property
    def session(self) -> SecureDataSession:
        """Session of the current control connection (fresh after reconnect)."""
        if self._session is None or self._session.connection_id != self._control.connection_id:
            self._session = SecureDataSession(connection_id=self._control.connection_id)
        return self._session

    @property
    def protection_level(self) -> ProtectionLevel:
        """Effective level; clear until PROT succeeds."""
        return self.session.protection_level or ProtectionLevel.CLEAR

    def exec_pbsz(self, size: int) -> int:
        """
        Declare the protection buffer size.

        Args:
            size: Buffer size, 0 for stream-oriented TLS

        Returns:
            Negotiated size (the server may lower it with "PBSZ=n")

        Raises:
            ValueError: If size is out of range
            ProtocolError: If the server does not accept the command
        """
        if not 0 <= size <= MAX_PBSZ:
            raise ValueError(f"PBSZ must be between 0 and {MAX_PBSZ}, got {size}")

        reply = self._control.execute_command(FTPCmd.PBSZ, size)
        if not reply.is_completion:
            raise ProtocolError(
                f"PBSZ {size} rejected", reply_code=reply.code, reply_text=reply.text
            )

        negotiated = size
        match = PBSZ_REPLY_PATTERN.search(reply.text)
        if match:
            negotiated = int(match.group(1))
        self.session.buffer_size = negotiated
        logger.debug(f"Protection buffer size {negotiated}")
        return negotiated

    def exec_prot(self, level: Union[str, ProtectionLevel]) -> ProtectionLevel:
        """
        Set the data channel protection level.

        Args:
            level: PROT letter or level name

        Returns:
            The level now in effect

        Raises:
            ProtocolError: If the server rejects the level; not retried
        """
        level = ProtectionLevel.parse(level)
        reply = self._control.execute_command(FTPCmd.PROT, level.value)
        if not reply.is_completion:
            raise ProtocolError(
                f"PROT {level.value} rejected", reply_code=reply.code, reply_text=reply.text
            )
        self.session.protection_level = level
        logger.info(f"Data channel protection level set to {level.name.lower()}")
        return level

    def ensure_session(self) -> SecureDataSession:
        """
        Make sure protection is negotiated before a data connection opens.

        Returns:
            The current session (possibly still unestablished when auto
            protection is off, in which case data flows in the clear)
        """
        session = self.session
        if session.is_established or not self._auto_protect:
            return session
        if session.buffer_size is None:
            self.exec_pbsz(0)
        if session.protection_level is None:
            self.exec_prot(self._default_level)
        return session
