"""Shared test fixtures."""

from __future__ import annotations

import socketserver
import threading

import pytest

from fprot_sdk.client import FprotClient

EICAR = b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"

HELP_LINE = "FPSCAND:6.7.10.6267 ENGINE:4.6.5.141 PROTOCOL:4.2 SIGNATURE:201811011409 UPTIME:3600"


# ------------------------------------------------------------------ #
# Fake daemon
# ------------------------------------------------------------------ #


class _Handler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        fake: FakeFpscand = self.server.fake  # type: ignore[attr-defined]
        fake.connections += 1
        queue: list[str] | None = None

        while True:
            raw = self.rfile.readline()
            if not raw:
                return
            line = raw.decode().rstrip("\n")
            fake.requests.append(line)

            if line == "QUIT":
                fake.quit_received.set()
                return
            if line == "HELP":
                self._reply([fake.help_line, ""])
                continue
            if line == "QUEUE":
                queue = []
                continue
            if line == "SCAN":
                if fake.hangup:
                    return
                self._reply(queue or [])
                queue = None
                continue

            if line.startswith("SCAN FILE "):
                result = fake.verdict(line[len("SCAN FILE "):], None)
            elif line.startswith("SCAN STREAM "):
                name, _, size = line[len("SCAN STREAM "):].rpartition(" SIZE ")
                data = self.rfile.read(int(size))
                fake.payloads.append(data)
                result = fake.verdict(name, data)
            else:
                result = f"4 <unknown command> {line}"

            if queue is not None:
                queue.append(result)
            elif fake.hangup:
                return
            else:
                self._reply([result])

    def _reply(self, lines: list[str]) -> None:
        if self.server.fake.silent:  # type: ignore[attr-defined]
            return
        self.wfile.write("".join(f"{ln}\n" for ln in lines).encode())


class _Server(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


class FakeFpscand:
    """In-process fake that mimics the F-Prot daemon line protocol.

    Items are reported infected when their name or content contains
    ``eicar``. Set :attr:`verdicts` to force the reply line for a name,
    :attr:`silent` to never answer, or :attr:`hangup` to drop the
    connection instead of answering.
    """

    def __init__(self) -> None:
        self.requests: list[str] = []
        self.payloads: list[bytes] = []
        self.verdicts: dict[str, str] = {}
        self.help_line = HELP_LINE
        self.silent = False
        self.hangup = False
        self.connections = 0
        self.quit_received = threading.Event()
        self._server = _Server(("127.0.0.1", 0), _Handler)
        self._server.fake = self  # type: ignore[attr-defined]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def address(self) -> str:
        host, port = self._server.server_address[:2]
        return f"{host}:{port}"

    def verdict(self, name: str, data: bytes | None) -> str:
        if name in self.verdicts:
            return self.verdicts[name]
        if b"EICAR" in (data or b"") or "eicar" in name.lower():
            return f"1 <infected: EICAR_Test_File> {name}"
        return f"0 <clean> {name}"

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def sample_bytes() -> bytes:
    return b"Hello, F-Prot!"


@pytest.fixture()
def eicar_bytes() -> bytes:
    """EICAR anti-malware test string (safe; every AV recognises it)."""
    return EICAR


@pytest.fixture()
def fpscand():
    fake = FakeFpscand()
    fake.start()
    yield fake
    fake.stop()


@pytest.fixture()
def client(fpscand: FakeFpscand):
    c = FprotClient(fpscand.address, cmd_timeout=5)
    yield c
    c.close()
