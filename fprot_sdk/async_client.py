"""Asynchronous client for the F-Prot scanning daemon (``asyncio`` streams)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import Any, Awaitable, BinaryIO, Iterator, Mapping, TypeVar

from fprot_sdk.client import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CMD_TIMEOUT,
    DEFAULT_CONN_SLEEP,
    DEFAULT_CONN_TIMEOUT,
    PathLike,
    _check_paths,
    _check_timeout,
    _stream_sizes,
    client_options_from_env,
)
from fprot_sdk.connection import DEFAULT_ADDRESS, parse_address
from fprot_sdk.exceptions import (
    FprotConfigurationError,
    FprotConnectionError,
    FprotError,
    FprotProtocolError,
    FprotTimeoutError,
)
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

_T = TypeVar("_T")

# longest response line accepted from the daemon
_READ_LIMIT = 1024 * 1024


async def async_dial(
    host: str,
    port: int,
    timeout: float,
    retries: int = 0,
    sleep: float = 1.0,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open an IPv4 stream connection, retrying attempts that time out.

    Raises:
        FprotConnectionError: If no connection could be established.
    """
    last_exc: BaseException | None = None
    for attempt in range(retries + 1):
        logger.debug("Connecting to %s:%d (attempt %d/%d)", host, port, attempt + 1, retries + 1)
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(host, port, family=socket.AF_INET, limit=_READ_LIMIT),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            last_exc = exc
            if attempt < retries:
                logger.warning("Connection to %s:%d timed out, retrying in %ss", host, port, sleep)
                await asyncio.sleep(sleep)
        except OSError as exc:
            raise FprotConnectionError(f"Unable to connect to {host}:{port}: {exc}") from exc

    raise FprotConnectionError(
        f"Unable to connect to {host}:{port}: timed out after {retries + 1} attempt(s)"
    ) from last_exc


class AsyncConnection:
    """Line oriented wrapper around an ``asyncio`` stream pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._timeout: float | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextlib.contextmanager
    def deadline(self, timeout: float | None) -> Iterator[None]:
        """Bound every awaited operation in the block by *timeout* seconds."""
        self._timeout = timeout
        try:
            yield
        finally:
            self._timeout = None

    async def send_line(self, line: bytes) -> None:
        logger.debug("Sending command: %r", line)
        await self.send_bytes(line)

    async def send_bytes(self, data: bytes) -> None:
        self._writer.write(data)
        await self._io(self._writer.drain())

    async def send_stream(self, source: BinaryIO, size: int, chunk_size: int) -> None:
        """Copy exactly *size* bytes from *source* to the daemon.

        Raises:
            FprotProtocolError: If *source* ends before *size* bytes were read.
        """
        remaining = size
        while remaining > 0:
            chunk = source.read(min(chunk_size, remaining))
            if not chunk:
                raise FprotProtocolError(
                    f"Stream ended after {size - remaining} of {size} declared bytes"
                )
            await self.send_bytes(chunk)
            remaining -= len(chunk)

    async def read_line(self) -> bytes:
        """Read one line, or ``b""`` once the daemon closed the stream."""
        line = await self._io(self._reader.readline())
        logger.debug("Received line: %r", line)
        return line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as exc:
            logger.debug("Error while closing connection: %s", exc)

    async def _io(self, aw: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(aw, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise FprotTimeoutError(f"Command timed out after {self._timeout}s") from exc
        except (asyncio.LimitOverrunError, ValueError) as exc:
            raise FprotProtocolError(f"Response line too long: {exc}") from exc
        except OSError as exc:
            raise FprotConnectionError(str(exc)) from exc


class AsyncFprotClient:
    """Asynchronous client for the F-Prot daemon line protocol.

    Same configuration and semantics as :class:`~fprot_sdk.client.FprotClient`,
    with coroutine methods. One connection per client; an :class:`asyncio.Lock`
    guards dialing only, so commands on one client must not run concurrently.

    Example::

        async with AsyncFprotClient("127.0.0.1:10200") as client:
            responses = await client.scan_reader(b"some data")
            print(responses[0].infected)
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
        self._conn: AsyncConnection | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AsyncFprotClient:
        """Create a client configured from ``FPROT_*`` environment variables."""
        options: dict[str, Any] = client_options_from_env(environ)
        return cls(**options)

    @property
    def address(self) -> str:
        return self._address

    @property
    def cmd_timeout(self) -> float:
        return self._cmd_timeout

    def set_conn_timeout(self, timeout: float) -> None:
        self._conn_timeout = _check_timeout("conn_timeout", timeout)

    def set_cmd_timeout(self, timeout: float) -> None:
        self._cmd_timeout = _check_timeout("cmd_timeout", timeout)

    def set_conn_retries(self, retries: int) -> None:
        self._conn_retries = max(retries, 0)

    def set_conn_sleep(self, sleep: float) -> None:
        self._conn_sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def info(self) -> Info:
        """Query the daemon version information with ``HELP``."""
        conn = await self._connect()
        with conn.deadline(self._cmd_timeout):
            await conn.send_line(encode_command(Command.HELP))
            line = await conn.read_line()
            await conn.read_line()
        return parse_info(line)

    async def scan_file(self, path: PathLike) -> list[Response]:
        """Scan a single file by path on the daemon's filesystem."""
        return await self._file_cmd([path])

    async def scan_files(self, *paths: PathLike) -> list[Response]:
        """Scan several files by path in a single queued request."""
        return await self._file_cmd(list(paths))

    async def scan_stream(self, *paths: PathLike) -> list[Response]:
        """Upload local files to the daemon and scan their content."""
        return await self._stream_cmd(list(paths))

    async def scan_reader(self, source: Source) -> list[Response]:
        """Upload in-memory data or an open binary file and scan it.

        Raises:
            FprotConfigurationError: If *source* is not binary or its length
                cannot be determined.
        """
        size = content_length(source)
        stream = as_stream(source)

        conn = await self._connect()
        with conn.deadline(self._cmd_timeout):
            await conn.send_line(encode_stream_header(STREAM_NAME, size))
            await conn.send_stream(stream, size, self._chunk_size)
            responses = await self._read_responses(conn, 1)
        raise_for_status(responses)
        return responses

    async def scan_dir(self, directory: PathLike, recursive: bool = True) -> list[Response]:
        """Scan every file under *directory* by path."""
        return await self._file_cmd(get_files(directory, recursive))

    async def scan_dir_stream(self, directory: PathLike, recursive: bool = True) -> list[Response]:
        """Upload and scan every file under *directory*."""
        return await self._stream_cmd(get_files(directory, recursive))

    async def close(self) -> None:
        """Send ``QUIT`` (best effort) and close the connection."""
        async with self._lock:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            with conn.deadline(self._cmd_timeout):
                await conn.send_line(encode_command(Command.QUIT))
        except FprotError as exc:
            logger.debug("QUIT to %s failed: %s", self._address, exc)
        finally:
            await conn.close()

    async def __aenter__(self) -> AsyncFprotClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _connect(self) -> AsyncConnection:
        async with self._lock:
            if self._conn is None:
                reader, writer = await async_dial(
                    self._host,
                    self._port,
                    self._conn_timeout,
                    self._conn_retries,
                    self._conn_sleep,
                )
                self._conn = AsyncConnection(reader, writer)
            return self._conn

    async def _file_cmd(self, paths: list[PathLike]) -> list[Response]:
        names = _check_paths(paths)
        batched = len(names) > 1

        conn = await self._connect()
        with conn.deadline(self._cmd_timeout):
            if batched:
                await conn.send_line(encode_command(Command.QUEUE))
            for name in names:
                await conn.send_line(encode_command(Command.SCAN_FILE, name))
            if batched:
                await conn.send_line(encode_command(Command.SCAN_QUEUE))
            responses = await self._read_responses(conn, len(names))
        raise_for_status(responses)
        return responses

    async def _stream_cmd(self, paths: list[PathLike]) -> list[Response]:
        names = _check_paths(paths)
        sizes = _stream_sizes(names)
        batched = len(names) > 1

        conn = await self._connect()
        with conn.deadline(self._cmd_timeout):
            if batched:
                await conn.send_line(encode_command(Command.QUEUE))
            for name, size in zip(names, sizes):
                try:
                    fh = open(name, "rb")
                except OSError as exc:
                    await self._discard(conn)
                    raise FprotConfigurationError(f"Unable to read {name}: {exc}") from exc
                with fh:
                    await conn.send_line(encode_stream_header(name, size))
                    await conn.send_stream(fh, size, self._chunk_size)
            if batched:
                await conn.send_line(encode_command(Command.SCAN_QUEUE))
            responses = await self._read_responses(conn, len(names))
        raise_for_status(responses)
        return responses

    async def _discard(self, conn: AsyncConnection) -> None:
        async with self._lock:
            if self._conn is conn:
                self._conn = None
        await conn.close()

    @staticmethod
    async def _read_responses(conn: AsyncConnection, count: int) -> list[Response]:
        responses: list[Response] = []
        for _ in range(count):
            line = await conn.read_line()
            if not line:
                break
            responses.append(parse_response(line))
        return responses
