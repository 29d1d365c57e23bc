"""Wire format of the ``fpscand`` line protocol.

Requests are newline terminated text lines, optionally followed by a raw
payload whose length was declared on the line (``SCAN STREAM ... SIZE n``).
Several requests can be batched between ``QUEUE`` and ``SCAN``; the daemon
then answers with one line per queued item, in submission order.

Each response line looks like::

    <statuscode> <<status>[: <signature>]> [<filename>][-><archive item>]
"""

from __future__ import annotations

import io
import logging
import os
import re
import stat
from typing import BinaryIO, Iterable, Sequence, Union

from fprot_sdk.exceptions import FprotConfigurationError, FprotProtocolError, FprotScanError
from fprot_sdk.models import Command, Info, Response, StatusCode

logger = logging.getLogger(__name__)

ENCODING = "utf-8"

STREAM_NAME = "stream"

Source = Union[bytes, bytearray, memoryview, BinaryIO]

_response_re = re.compile(
    r"^(?P<statuscode>\d+)\s<(?P<status>[^:]+)(?::\s+(?P<signature>.+?))?>"
    r"\s?(?P<filename>.+?)?(?:->(?P<aname>.*))?$"
)
_help_re = re.compile(
    r"^FPSCAND:(?P<version>\S+)\s*ENGINE:(?P<engine>\S+)\s*PROTOCOL:(?P<protocol>\S+)"
    r"\s*SIGNATURE:(?P<sig>\S+)\s*UPTIME:(?P<uptime>\S+)$"
)


# ------------------------------------------------------------------
# Encoding
# ------------------------------------------------------------------


def encode_command(command: Command, *args: str) -> bytes:
    """Encode *command* and its arguments as a single request line."""
    for arg in args:
        if "\n" in arg or "\r" in arg:
            raise FprotConfigurationError(f"Line breaks are not allowed in arguments: {arg!r}")
    line = " ".join([command.value, *args])
    return f"{line}\n".encode(ENCODING)


def encode_stream_header(name: str, size: int) -> bytes:
    """Encode the ``SCAN STREAM`` line announcing a *size* byte payload."""
    return encode_command(Command.SCAN_STREAM, name, "SIZE", str(size))


def content_length(source: Source) -> int:
    """Return the number of bytes left to read from *source*.

    Supports bytes-like objects, real files and seekable binary streams.

    Raises:
        FprotConfigurationError: If *source* is a text stream or the length
            cannot be determined up front.
    """
    if isinstance(source, io.TextIOBase):
        raise FprotConfigurationError("The source must be opened in binary mode")
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    if isinstance(source, memoryview):
        return source.nbytes

    try:
        fd = source.fileno()
    except (AttributeError, OSError, io.UnsupportedOperation):
        fd = None
    if fd is not None:
        st = os.fstat(fd)
        if stat.S_ISREG(st.st_mode):
            return max(st.st_size - source.tell(), 0)

    seekable = getattr(source, "seekable", None)
    if seekable is not None and seekable():
        pos = source.tell()
        end = source.seek(0, os.SEEK_END)
        source.seek(pos)
        return end - pos

    raise FprotConfigurationError("The content length could not be determined")


def as_stream(source: Source) -> BinaryIO:
    """Wrap a bytes-like *source* so it can be read like a file."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return io.BytesIO(source)
    return source


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


def decode_line(line: bytes) -> str:
    return line.decode(ENCODING, errors="replace").rstrip("\r\n")


def parse_response(line: Union[bytes, str]) -> Response:
    """Parse one scan response line.

    Raises:
        FprotProtocolError: If the line does not follow the response grammar.
    """
    text = decode_line(line) if isinstance(line, bytes) else line.rstrip("\r\n")
    m = _response_re.match(text)
    if m is None:
        raise FprotProtocolError(f"Invalid server response: {text}")

    try:
        code = int(m.group("statuscode"))
    except ValueError as exc:
        raise FprotProtocolError(f"Invalid status code in server response: {text}") from exc

    return Response(
        status_code=StatusCode(code),
        status=m.group("status"),
        signature=m.group("signature") or "",
        filename=m.group("filename") or "",
        archive_item=m.group("aname"),
        raw=text,
    )


def parse_info(line: Union[bytes, str]) -> Info:
    """Parse the ``HELP`` handshake line.

    Raises:
        FprotProtocolError: If the line does not follow the handshake grammar.
    """
    text = decode_line(line) if isinstance(line, bytes) else line.rstrip("\r\n")
    m = _help_re.match(text)
    if m is None:
        raise FprotProtocolError(f"Invalid server response: {text}")
    return Info(
        version=m.group("version"),
        engine=m.group("engine"),
        protocol=m.group("protocol"),
        signature=m.group("sig"),
        uptime=m.group("uptime"),
    )


def first_error(responses: Iterable[Response]) -> Response | None:
    """Return the first response carrying an error bit, if any."""
    for resp in responses:
        if resp.soft_error:
            return resp
    return None


def raise_for_status(responses: Sequence[Response]) -> None:
    """Raise :class:`FprotScanError` if any response reports an error."""
    err = first_error(responses)
    if err is not None:
        logger.debug("Scan reported error status %d for %s", err.status_code, err.filename)
        raise FprotScanError(err, responses)
