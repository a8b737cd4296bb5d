"""FTP reply value object and reply code classification."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List

from src.ftps.exceptions import ProtocolError


REPLY_CODE_PATTERN = re.compile(r"^[1-5]\d\d$")

# Well-known reply codes used by the engine
SERVICE_READY = 220
SECURITY_DATA_EXCHANGE_COMPLETE = 234
FILE_STATUS = 213
COMMAND_OK = 200
USER_LOGGED_IN = 230
NEED_PASSWORD = 331
NEED_ACCOUNT = 332


class ReplyCategory(Enum):
    """Reply category, determined by the first digit of the code."""
    POSITIVE_PRELIMINARY = 1
    POSITIVE_COMPLETION = 2
    POSITIVE_INTERMEDIATE = 3
    TRANSIENT_NEGATIVE = 4
    PERMANENT_NEGATIVE = 5


def classify(code: int) -> ReplyCategory:
    """Map a three-digit reply code to its category."""
    if not 100 <= code <= 599:
        raise ProtocolError(f"Reply code out of range: {code}", reply_code=code)
    return ReplyCategory(code // 100)


def is_positive_preliminary(code: int) -> bool:
    return 100 <= code < 200


def is_positive_completion(code: int) -> bool:
    return 200 <= code < 300


def is_positive_intermediate(code: int) -> bool:
    return 300 <= code < 400


def is_negative_transient(code: int) -> bool:
    return 400 <= code < 500


def is_negative_permanent(code: int) -> bool:
    return 500 <= code < 600


@dataclass(frozen=True)
class Reply:
    """A complete (possibly multi-line) server reply."""
    code: int
    lines: tuple

    @property
    def category(self) -> ReplyCategory:
        return classify(self.code)

    @property
    def text(self) -> str:
        """Full reply text, lines joined with newlines."""
        return "\n".join(self.lines)

    @property
    def message(self) -> str:
        """Text of the final line without the code."""
        return self.lines[-1][4:] if self.lines else ""

    @property
    def is_success(self) -> bool:
        """True for positive completion and positive intermediate replies."""
        return self.category in (
            ReplyCategory.POSITIVE_COMPLETION,
            ReplyCategory.POSITIVE_INTERMEDIATE,
        )

    @property
    def is_preliminary(self) -> bool:
        return self.category is ReplyCategory.POSITIVE_PRELIMINARY

    @property
    def is_completion(self) -> bool:
        return self.category is ReplyCategory.POSITIVE_COMPLETION

    @property
    def is_intermediate(self) -> bool:
        return self.category is ReplyCategory.POSITIVE_INTERMEDIATE

    @property
    def is_permanent_negative(self) -> bool:
        return self.category is ReplyCategory.PERMANENT_NEGATIVE

    @property
    def is_negative(self) -> bool:
        return self.category in (
            ReplyCategory.TRANSIENT_NEGATIVE,
            ReplyCategory.PERMANENT_NEGATIVE,
        )

    def __str__(self) -> str:
        return self.text


def parse_reply(raw: str) -> Reply:
    """
    Parse the text returned by the base engine into a Reply.

    Args:
        raw: Reply lines separated by newlines, as read from the control
            connection (continuation lines included)

    Returns:
        Parsed Reply

    Raises:
        ProtocolError: If the reply does not start with a three-digit code
    """
    lines: List[str] = raw.splitlines() or [""]
    first = lines[0]
    code_text = first[:3]
    if not REPLY_CODE_PATTERN.match(code_text) or first[3:4] not in ("", " ", "-"):
        raise ProtocolError(f"Malformed reply: {first!r}", reply_text=raw)
    # The terminating line of a multi-line reply repeats the code
    last = lines[-1]
    if len(lines) > 1 and not last.startswith(code_text):
        raise ProtocolError(f"Truncated multi-line reply: {first!r}", reply_text=raw)
    return Reply(code=int(code_text), lines=tuple(lines))
