"""Configuration and connection sharing tests for FprotClient."""

from __future__ import annotations

import threading

import pytest

from fprot_sdk import client as client_module
from fprot_sdk.client import FprotClient
from fprot_sdk.exceptions import FprotConfigurationError


class TestDefaults:
    def test_defaults(self):
        c = FprotClient()
        assert c.address == "127.0.0.1:10200"
        assert c.conn_timeout == 15
        assert c.cmd_timeout == 60
        assert c.conn_retries == 0
        assert c.conn_sleep == 1

    def test_invalid_address(self):
        with pytest.raises(FprotConfigurationError, match="The supplied address is invalid"):
            FprotClient("fe80::1%en0")

    def test_socket_path_rejected(self):
        with pytest.raises(FprotConfigurationError):
            FprotClient("/var/lib/ms/ms.sock")

    @pytest.mark.parametrize("option", ["conn_timeout", "cmd_timeout"])
    @pytest.mark.parametrize("value", [0, -1.5])
    def test_non_positive_timeout_rejected(self, option: str, value: float):
        with pytest.raises(FprotConfigurationError, match=f"{option} must be a positive number"):
            FprotClient(**{option: value})


class TestSetters:
    def test_setters(self):
        c = FprotClient()
        c.set_conn_timeout(2)
        c.set_cmd_timeout(3)
        c.set_conn_sleep(4)
        c.set_conn_retries(2)
        assert c.conn_timeout == 2
        assert c.cmd_timeout == 3
        assert c.conn_sleep == 4
        assert c.conn_retries == 2

    def test_zero_timeouts_rejected(self):
        c = FprotClient(cmd_timeout=5)
        with pytest.raises(FprotConfigurationError, match="cmd_timeout"):
            c.set_cmd_timeout(0)
        with pytest.raises(FprotConfigurationError, match="conn_timeout"):
            c.set_conn_timeout(0)
        assert c.cmd_timeout == 5
        assert c.conn_timeout == 15

    def test_negative_retries_clamped(self):
        c = FprotClient(conn_retries=-1)
        assert c.conn_retries == 0
        c.set_conn_retries(-2)
        assert c.conn_retries == 0

    def test_dial_uses_settings(self, monkeypatch: pytest.MonkeyPatch):
        calls = []

        def fake_dial(host, port, timeout, retries, sleep):
            calls.append((host, port, timeout, retries, sleep))
            raise client_module.FprotError("stop")

        monkeypatch.setattr(client_module, "dial", fake_dial)
        c = FprotClient("10.0.0.1:2000")
        c.set_conn_timeout(5)
        c.set_conn_retries(3)
        c.set_conn_sleep(0.5)
        with pytest.raises(client_module.FprotError):
            c.info()
        assert calls == [("10.0.0.1", 2000, 5, 3, 0.5)]


class TestFromEnv:
    def test_defaults_when_unset(self):
        c = FprotClient.from_env({})
        assert c.address == "127.0.0.1:10200"
        assert c.cmd_timeout == 60

    def test_all_variables(self):
        c = FprotClient.from_env(
            {
                "FPROT_ADDRESS": "192.168.1.126:10200",
                "FPROT_CONN_TIMEOUT": "5",
                "FPROT_CMD_TIMEOUT": "30.5",
                "FPROT_CONN_RETRIES": "2",
                "FPROT_CONN_SLEEP": "0.25",
            }
        )
        assert c.address == "192.168.1.126:10200"
        assert c.conn_timeout == 5.0
        assert c.cmd_timeout == 30.5
        assert c.conn_retries == 2
        assert c.conn_sleep == 0.25

    def test_reads_process_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FPROT_ADDRESS", "10.1.1.1:10200")
        assert FprotClient.from_env().address == "10.1.1.1:10200"

    def test_invalid_number(self):
        with pytest.raises(FprotConfigurationError, match="FPROT_CONN_RETRIES"):
            FprotClient.from_env({"FPROT_CONN_RETRIES": "many"})

    def test_zero_timeout(self):
        with pytest.raises(FprotConfigurationError, match="cmd_timeout"):
            FprotClient.from_env({"FPROT_CMD_TIMEOUT": "0"})

    def test_invalid_address(self):
        with pytest.raises(FprotConfigurationError):
            FprotClient.from_env({"FPROT_ADDRESS": "nocolon"})


class TestSharedConnection:
    def test_concurrent_first_use_dials_once(self, fpscand, monkeypatch: pytest.MonkeyPatch):
        dials = []
        real_dial = client_module.dial

        def counting_dial(*args):
            dials.append(args)
            return real_dial(*args)

        monkeypatch.setattr(client_module, "dial", counting_dial)
        c = FprotClient(fpscand.address)
        barrier = threading.Barrier(8)
        conns = []

        def worker():
            barrier.wait()
            conns.append(c._connect())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        c.close()

        assert len(dials) == 1
        assert len({id(conn) for conn in conns}) == 1

    def test_client_per_thread(self, fpscand):
        results = {}

        def worker(i: int):
            with FprotClient(fpscand.address, cmd_timeout=5) as c:
                results[i] = c.scan_files(f"/tmp/{i}/a", f"/tmp/{i}/b")

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for i in range(4):
            assert [r.filename for r in results[i]] == [f"/tmp/{i}/a", f"/tmp/{i}/b"]
