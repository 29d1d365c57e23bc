"""Data models for F-Prot daemon commands and responses."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class Command(str, enum.Enum):
    """Commands understood by ``fpscand``; the value is the wire text."""

    HELP = "HELP"
    SCAN_FILE = "SCAN FILE"
    SCAN_STREAM = "SCAN STREAM"
    QUEUE = "QUEUE"
    SCAN_QUEUE = "SCAN"
    QUIT = "QUIT"

    def __str__(self) -> str:
        return self.value


class StatusCode(enum.IntFlag):
    """Status bitmask reported by the daemon for each scanned item.

    Several bits may be set at once, so always test with the predicates
    below rather than comparing for equality.
    """

    NO_MATCH = 0
    INFECTED = 1
    HEURISTIC_MATCH = 2
    USER_ERROR = 4
    RESTRICTION_ERROR = 8
    SYSTEM_ERROR = 16
    INTERNAL_ERROR = 32
    SKIP_ERROR = 64
    DISINFECT_ERROR = 128

    @property
    def is_infected(self) -> bool:
        return bool(self & _INFECTED_MASK)

    @property
    def is_soft_error(self) -> bool:
        return bool(self & _SOFT_ERROR_MASK)

    @property
    def description(self) -> str:
        """Manual text for a single status code, ``""`` for combinations."""
        return _DESCRIPTIONS.get(int(self), "")


_INFECTED_MASK = StatusCode.INFECTED | StatusCode.DISINFECT_ERROR | StatusCode.HEURISTIC_MATCH

_SOFT_ERROR_MASK = (
    StatusCode.USER_ERROR
    | StatusCode.RESTRICTION_ERROR
    | StatusCode.SYSTEM_ERROR
    | StatusCode.INTERNAL_ERROR
    | StatusCode.SKIP_ERROR
    | StatusCode.DISINFECT_ERROR
)

_DESCRIPTIONS = {
    0: "No signature was matched",
    1: "At least one virus-infected object was found",
    2: "At least one suspicious (heuristic match) object was found",
    4: "Scanning interrupted by user",
    8: "Scan restriction caused scan to skip files",
    16: "Platform error",
    32: "Internal engine error",
    64: "At least one object was not scanned",
    128: "At least one object was disinfected",
}


@dataclass(frozen=True, slots=True)
class Response:
    """Verdict for one scanned item.

    Attributes:
        status_code: Status bitmask reported by the daemon.
        status: Free-text status phrase (e.g. ``"clean"``, ``"infected"``).
        signature: Detected signature name, or ``""`` if none.
        filename: Name of the scanned item as echoed by the daemon.
        archive_item: Member path inside a container when the match was
            found in an archive; ``None`` when the line has no member part.
        raw: The unparsed response line.
    """

    status_code: StatusCode
    status: str
    signature: str = ""
    filename: str = ""
    archive_item: str | None = None
    raw: str = ""

    @property
    def infected(self) -> bool:
        return self.status_code.is_infected

    @property
    def soft_error(self) -> bool:
        return self.status_code.is_soft_error


@dataclass(frozen=True, slots=True)
class Info:
    """Handshake information returned by the ``HELP`` command.

    Attributes:
        version: Daemon version.
        engine: Scan engine version.
        protocol: Protocol version.
        signature: Signature database version.
        uptime: Daemon uptime as reported.
    """

    version: str
    engine: str
    protocol: str
    signature: str
    uptime: str
