"""Symbolic command tokens and enumerations shared by the FTPS engine."""

from enum import Enum


class FTPCmd(Enum):
    """FTP command keywords, usable wherever a command token is accepted."""
    ABOR = "ABOR"
    ACCT = "ACCT"
    APPE = "APPE"
    AUTH = "AUTH"
    CCC = "CCC"
    CDUP = "CDUP"
    CWD = "CWD"
    DELE = "DELE"
    EPRT = "EPRT"
    EPSV = "EPSV"
    FEAT = "FEAT"
    LIST = "LIST"
    MDTM = "MDTM"
    MFMT = "MFMT"
    MKD = "MKD"
    MLSD = "MLSD"
    MLST = "MLST"
    MODE = "MODE"
    NLST = "NLST"
    NOOP = "NOOP"
    PASS = "PASS"
    PASV = "PASV"
    PBSZ = "PBSZ"
    PORT = "PORT"
    PROT = "PROT"
    PWD = "PWD"
    QUIT = "QUIT"
    REST = "REST"
    RETR = "RETR"
    RMD = "RMD"
    RNFR = "RNFR"
    RNTO = "RNTO"
    SIZE = "SIZE"
    STOR = "STOR"
    STRU = "STRU"
    SYST = "SYST"
    TYPE = "TYPE"
    USER = "USER"

    @property
    def command(self) -> str:
        """Wire keyword for this command."""
        return self.value


def command_token(token) -> str:
    """Normalize a string or FTPCmd to an upper-case command keyword."""
    if isinstance(token, FTPCmd):
        return token.value
    return str(token).strip().upper()


class TLSMode(Enum):
    """How the control connection is secured."""
    IMPLICIT = "implicit"
    EXPLICIT = "explicit"


class FileType(Enum):
    """Representation type set with TYPE."""
    ASCII = "A"
    BINARY = "I"


class TransferIntent(Enum):
    """What a data connection is opened for, and the command that opens it."""
    LIST = "LIST"
    NAME_LIST = "NLST"
    RETRIEVE = "RETR"
    STORE = "STOR"

    @property
    def is_read_only(self) -> bool:
        return self is not TransferIntent.STORE


class DataDirection(Enum):
    """Who opens the data connection."""
    PASSIVE = "passive"
    ACTIVE = "active"
