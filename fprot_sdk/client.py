"""Synchronous client for the F-Prot scanning daemon (``fpscand``)."""

from __future__ import annotations

import logging
import os
import stat
import threading
from pathlib import Path
from typing import Callable, Mapping, TypeVar, Union

from fprot_sdk.connection import DEFAULT_ADDRESS, Connection, dial, parse_address
from fprot_sdk.exceptions import FprotConfigurationError, FprotError
from fprot_sdk.files import get_files
from fprot_sdk.models import Command, Info, Response
from fprot_sdk.protocol import (
    STREAM_NAME,
    Source,
    as_stream,
    content_length,
    encode_command,
    encode_stream_header,
    parse_info,
    parse_response,
    raise_for_status,
)

logger = logging.getLogger(__name__)

DEFAULT_CONN_TIMEOUT = 15.0
DEFAULT_CMD_TIMEOUT = 60.0
DEFAULT_CONN_SLEEP = 1.0
DEFAULT_CHUNK_SIZE = 65536

PathLike = Union[str, Path]

_T = TypeVar("_T", int, float)


class FprotClient:
    """Synchronous client for the F-Prot daemon line protocol.

    The client holds a single TCP connection, dialed on first use and reused
    by every later command until :meth:`close`. A lock guards dialing only:
    commands on one client must not be issued concurrently. Use one client
    per thread for parallel scans.

    Args:
        address: Daemon address as ``host:port``. Defaults to
            ``127.0.0.1:10200``.
        conn_timeout: Timeout in seconds for each connection attempt.
        cmd_timeout: Timeout in seconds for each blocking read or write of
            a command.
        conn_retries: Extra connection attempts made when an attempt times
            out.
        conn_sleep: Pause in seconds between connection attempts.
        chunk_size: Size of the chunks used to upload stream content.

    Raises:
        FprotConfigurationError: If *address* is not a valid ``host:port``
            or a timeout is not a positive number of seconds.

    Example::

        with FprotClient("127.0.0.1:10200") as client:
            for resp in client.scan_files("/tmp/a.txt", "/tmp/b.zip"):
                print(resp.filename, resp.infected, resp.signature)
    """

    def __init__(
        self,
        address: str | None = None,
        *,
        conn_timeout: float = DEFAULT_CONN_TIMEOUT,
        cmd_timeout: float = DEFAULT_CMD_TIMEOUT,
        conn_retries: int = 0,
        conn_sleep: float = DEFAULT_CONN_SLEEP,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._host, self._port = parse_address(address)
        self._address = address or DEFAULT_ADDRESS
        self._conn_timeout = _check_timeout("conn_timeout", conn_timeout)
        self._cmd_timeout = _check_timeout("cmd_timeout", cmd_timeout)
        self._conn_retries = max(conn_retries, 0)
        self._conn_sleep = conn_sleep
        self._chunk_size = chunk_size
        self._conn: Connection | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> FprotClient:
        """Create a client configured from ``FPROT_*`` environment variables.

        Reads ``FPROT_ADDRESS``, ``FPROT_CONN_TIMEOUT``, ``FPROT_CMD_TIMEOUT``,
        ``FPROT_CONN_RETRIES`` and ``FPROT_CONN_SLEEP``; unset variables keep
        their defaults.
        """
        return cls(**client_options_from_env(environ))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def conn_timeout(self) -> float:
        return self._conn_timeout

    @property
    def cmd_timeout(self) -> float:
        return self._cmd_timeout

    @property
    def conn_retries(self) -> int:
        return self._conn_retries

    @property
    def conn_sleep(self) -> float:
        return self._conn_sleep

    def set_conn_timeout(self, timeout: float) -> None:
        """Set the connection timeout; applies to the next dial."""
        self._conn_timeout = _check_timeout("conn_timeout", timeout)

    def set_cmd_timeout(self, timeout: float) -> None:
        """Set the command timeout; applies from the next command on."""
        self._cmd_timeout = _check_timeout("cmd_timeout", timeout)

    def set_conn_retries(self, retries: int) -> None:
        """Set the number of retries on connection timeouts (minimum 0)."""
        self._conn_retries = max(retries, 0)

    def set_conn_sleep(self, sleep: float) -> None:
        """Set the pause between connection retries."""
        self._conn_sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def info(self) -> Info:
        """Query the daemon version information with ``HELP``.

        Returns:
            An :class:`Info` describing the daemon.

        Raises:
            FprotProtocolError: If the handshake line is malformed.
        """
        conn = self._connect()
        with conn.deadline(self._cmd_timeout):
            conn.send_line(encode_command(Command.HELP))
            line = conn.read_line()
            # the handshake is followed by an empty terminator line
            conn.read_line()
        return parse_info(line)

    def scan_file(self, path: PathLike) -> list[Response]:
        """Scan a single file by path on the daemon's filesystem.

        Returns:
            The responses reported for *path*.

        Raises:
            FprotConfigurationError: If *path* is empty.
            FprotScanError: If the daemon reports an error status.
        """
        return self._file_cmd([path])

    def scan_files(self, *paths: PathLike) -> list[Response]:
        """Scan several files by path in a single queued request.

        The daemon must be able to read the paths itself.

        Returns:
            One :class:`Response` per path, in submission order.

        Raises:
            FprotConfigurationError: If no path was given.
            FprotScanError: If any item reports an error status. All parsed
                responses are available on the exception.
        """
        return self._file_cmd(list(paths))

    def scan_stream(self, *paths: PathLike) -> list[Response]:
        """Upload local files to the daemon and scan their content.

        Use this when the daemon has no access to the files.

        Returns:
            One :class:`Response` per path, in submission order.

        Raises:
            FprotConfigurationError: If no path was given, or a path is not a
                readable regular file. Nothing is sent.
            FileNotFoundError: If a file does not exist. Nothing is sent.
            FprotScanError: If any item reports an error status.
        """
        return self._stream_cmd(list(paths))

    def scan_reader(self, source: Source) -> list[Response]:
        """Upload in-memory data or an open binary file and scan it.

        Args:
            source: Bytes-like object, open file or seekable binary stream.
                Its length must be known before sending.

        Returns:
            The responses reported for the stream.

        Raises:
            FprotConfigurationError: If *source* is not binary or its length
                cannot be determined. Nothing is sent.
        """
        size = content_length(source)
        stream = as_stream(source)

        conn = self._connect()
        with conn.deadline(self._cmd_timeout):
            conn.send_line(encode_stream_header(STREAM_NAME, size))
            conn.send_stream(stream, size, self._chunk_size)
            responses = self._read_responses(conn, 1)
        raise_for_status(responses)
        return responses

    def scan_dir(self, directory: PathLike, recursive: bool = True) -> list[Response]:
        """Scan every file under *directory* by path.

        Subdirectories are walked unless *recursive* is false.

        Raises:
            FprotConfigurationError: If *directory* is not a directory.
        """
        return self._file_cmd(get_files(directory, recursive))

    def scan_dir_stream(self, directory: PathLike, recursive: bool = True) -> list[Response]:
        """Upload and scan every file under *directory*.

        Raises:
            FprotConfigurationError: If *directory* is not a directory.
        """
        return self._stream_cmd(get_files(directory, recursive))

    def close(self) -> None:
        """Send ``QUIT`` and close the connection.

        ``QUIT`` is best effort: its failure is logged and the socket is
        closed regardless.
        """
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            with conn.deadline(self._cmd_timeout):
                conn.send_line(encode_command(Command.QUIT))
        except FprotError as exc:
            logger.debug("QUIT to %s failed: %s", self._address, exc)
        finally:
            conn.close()

    def __enter__(self) -> FprotClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connect(self) -> Connection:
        with self._lock:
            if self._conn is None:
                sock = dial(
                    self._host,
                    self._port,
                    self._conn_timeout,
                    self._conn_retries,
                    self._conn_sleep,
                )
                self._conn = Connection(sock)
            return self._conn

    def _file_cmd(self, paths: list[PathLike]) -> list[Response]:
        names = _check_paths(paths)
        batched = len(names) > 1

        conn = self._connect()
        with conn.deadline(self._cmd_timeout):
            if batched:
                conn.send_line(encode_command(Command.QUEUE))
            for name in names:
                conn.send_line(encode_command(Command.SCAN_FILE, name))
            if batched:
                conn.send_line(encode_command(Command.SCAN_QUEUE))
            responses = self._read_responses(conn, len(names))
        raise_for_status(responses)
        return responses

    def _stream_cmd(self, paths: list[PathLike]) -> list[Response]:
        names = _check_paths(paths)
        sizes = _stream_sizes(names)
        batched = len(names) > 1

        conn = self._connect()
        with conn.deadline(self._cmd_timeout):
            if batched:
                conn.send_line(encode_command(Command.QUEUE))
            for name, size in zip(names, sizes):
                try:
                    fh = open(name, "rb")
                except OSError as exc:
                    self._discard(conn)
                    raise FprotConfigurationError(f"Unable to read {name}: {exc}") from exc
                with fh:
                    conn.send_line(encode_stream_header(name, size))
                    conn.send_stream(fh, size, self._chunk_size)
            if batched:
                conn.send_line(encode_command(Command.SCAN_QUEUE))
            responses = self._read_responses(conn, len(names))
        raise_for_status(responses)
        return responses

    def _discard(self, conn: Connection) -> None:
        # the daemon is left waiting for the rest of the request
        with self._lock:
            if self._conn is conn:
                self._conn = None
        conn.close()

    @staticmethod
    def _read_responses(conn: Connection, count: int) -> list[Response]:
        responses: list[Response] = []
        for _ in range(count):
            line = conn.read_line()
            if not line:
                logger.debug("Connection closed after %d of %d responses", len(responses), count)
                break
            responses.append(parse_response(line))
        return responses


# ------------------------------------------------------------------
# Module-level helpers (shared with async variant)
# ------------------------------------------------------------------


def client_options_from_env(environ: Mapping[str, str] | None = None) -> dict[str, object]:
    """Collect client keyword arguments from ``FPROT_*`` variables."""
    env = os.environ if environ is None else environ
    options: dict[str, object] = {"address": env.get("FPROT_ADDRESS") or None}
    for key, name, cast in (
        ("conn_timeout", "FPROT_CONN_TIMEOUT", float),
        ("cmd_timeout", "FPROT_CMD_TIMEOUT", float),
        ("conn_retries", "FPROT_CONN_RETRIES", int),
        ("conn_sleep", "FPROT_CONN_SLEEP", float),
    ):
        value = env.get(name)
        if value:
            options[key] = _parse_number(name, value, cast)
    return options


def _parse_number(name: str, value: str, cast: Callable[[str], _T]) -> _T:
    try:
        return cast(value)
    except ValueError:
        raise FprotConfigurationError(f"Invalid value for {name}: {value!r}") from None


def _check_paths(paths: list[PathLike]) -> list[str]:
    names = [os.fspath(p) for p in paths]
    if not names or not all(names):
        raise FprotConfigurationError("At least one path to scan is required")
    return names


def _check_timeout(name: str, value: float) -> float:
    if value <= 0:
        raise FprotConfigurationError(f"{name} must be a positive number of seconds, got {value!r}")
    return value


def _stream_sizes(names: list[str]) -> list[int]:
    """Return the size of each file, rejecting anything that cannot be uploaded."""
    sizes = []
    for name in names:
        st = os.stat(name)
        if not stat.S_ISREG(st.st_mode):
            raise FprotConfigurationError(f"Not a regular file: {name}")
        if not os.access(name, os.R_OK):
            raise FprotConfigurationError(f"The file is not readable: {name}")
        sizes.append(st.st_size)
    return sizes
