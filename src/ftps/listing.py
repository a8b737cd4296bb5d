"""Remote file metadata and LIST reply parsing.

Only the Unix "ls -l" style listing produced by most servers is parsed;
other lines are kept as RemoteFile records with just the raw listing.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class RemoteFileType(Enum):
    """Kind of directory entry."""
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RemoteFile:
    """Metadata of one remote file, from a listing or an MDTM query."""
    name: str
    type: RemoteFileType = RemoteFileType.UNKNOWN
    size: Optional[int] = None
    timestamp: Optional[datetime] = None
    permissions: Optional[str] = None
    link_target: Optional[str] = None
    raw_listing: Optional[str] = None

    @property
    def is_directory(self) -> bool:
        return self.type is RemoteFileType.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.type is RemoteFileType.FILE


UNIX_LIST_PATTERN = re.compile(
    r"^(?P<type>[-dlbcps])(?P<perms>[-rwxsStTl]{9})[+@.]?\s+"
    r"\d+\s+\S+\s+\S+\s+"
    r"(?P<size>\d+)\s+"
    r"(?P<month>[A-Za-z]{3})\s+(?P<day>\d{1,2})\s+"
    r"(?P<time_or_year>\d{1,2}:\d{2}|\d{4})\s"
    r"(?P<name>.+)$"
)

MONTHS = {
    name: index
    for index, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"], start=1
    )
}

TYPE_CODES = {
    "-": RemoteFileType.FILE,
    "d": RemoteFileType.DIRECTORY,
    "l": RemoteFileType.SYMLINK,
}


def _listing_timestamp(month: str, day: str, time_or_year: str,
                       now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Resolve a listing date; recent entries omit the year.

    Entries showing a time instead of a year are within the last six
    months, so a date that would lie in the future belongs to last year.
    Feb 29 resolves to the most recent leap year not after now.
    """
    now = now or datetime.now(timezone.utc)
    month_number = MONTHS.get(month.lower())
    if month_number is None:
        return None
    try:
        if ":" in time_or_year:
            hour, minute = (int(part) for part in time_or_year.split(":"))
            for year in range(now.year, now.year - 8, -1):
                try:
                    stamp = datetime(year, month_number, int(day), hour, minute,
                                     tzinfo=timezone.utc)
                except ValueError:
                    continue
                if stamp <= now:
                    return stamp
            return None
        return datetime(int(time_or_year), month_number, int(day), tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_list_line(line: str, now: Optional[datetime] = None) -> Optional[RemoteFile]:
    """
    Parse one line of a LIST reply.

    Args:
        line: Listing line without line terminator
        now: Reference time for entries without a year

    Returns:
        RemoteFile, or None for blank and "total N" lines
    """
    stripped = line.rstrip("\r\n")
    if not stripped.strip() or stripped.lower().startswith("total "):
        return None

    match = UNIX_LIST_PATTERN.match(stripped)
    if not match:
        return RemoteFile(name=stripped.strip(), raw_listing=stripped)

    file_type = TYPE_CODES.get(match.group("type"), RemoteFileType.UNKNOWN)
    name = match.group("name")
    link_target = None
    if file_type is RemoteFileType.SYMLINK and " -> " in name:
        name, link_target = name.split(" -> ", 1)

    return RemoteFile(
        name=name,
        type=file_type,
        size=int(match.group("size")),
        timestamp=_listing_timestamp(
            match.group("month"), match.group("day"), match.group("time_or_year"), now
        ),
        permissions=match.group("perms"),
        link_target=link_target,
        raw_listing=stripped,
    )


def parse_listing(text: str, now: Optional[datetime] = None) -> List[RemoteFile]:
    """Parse a complete LIST reply into RemoteFile records."""
    entries = []
    for line in text.splitlines():
        entry = parse_list_line(line, now)
        if entry is not None:
            entries.append(entry)
    return entries
