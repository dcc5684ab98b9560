"""Shared test fixtures and fakes for kiro-sidecar."""

from __future__ import annotations

import itertools
import json
import subprocess
from pathlib import Path
from typing import Optional

import pytest

from kiro_sidecar.settings import SupervisorSettings
from kiro_sidecar.supervisor import SidecarSupervisor


SAMPLE_ACCOUNTS = [
    {
        "email": "banned@example.com",
        "status": "Account BANNED by provider",
        "provider": "Google",
        "refreshToken": "rt-banned-0001",
        "expiresAt": "2024/01/15 10:30:00",
    },
    {
        "email": "nosecret@example.com",
        "status": "active",
        "provider": "Github",
        "refreshToken": "   ",
    },
    {
        "email": "builder@example.com",
        "status": "正常",
        "provider": "Enterprise",
        "refreshToken": " rt-enterprise-0003 ",
        "clientId": "client-abc",
        "clientSecret": "secret-xyz",
        "region": "eu-west-1",
        "expiresAt": "2030-06-01T00:00:00Z",
        "usageData": {"subscriptionInfo": {"subscriptionTitle": "KIRO PRO"}},
    },
]


class FakeInspector:
    """In-memory ProcessInspector that records every signal sent.

    Attributes:
        listeners: PIDs currently listening on the port.
        cmdlines: PID -> command line.
        stubborn: PIDs that ignore SIGTERM.
        immortal: PIDs that ignore SIGKILL too.
        signals: (pid, force) tuples in delivery order.
    """

    supported = True

    def __init__(self, listeners=None, cmdlines=None, stubborn=(), immortal=()):
        self.listeners = list(listeners or [])
        self.cmdlines = dict(cmdlines or {})
        self.stubborn = set(stubborn)
        self.immortal = set(immortal)
        self.signals: list[tuple[int, bool]] = []
        self.list_calls = 0

    def list_listeners(self, port: int) -> list[int]:
        self.list_calls += 1
        return list(self.listeners)

    def command_line(self, pid: int) -> Optional[str]:
        return self.cmdlines.get(pid)

    def terminate(self, pid: int, force: bool = False) -> None:
        self.signals.append((pid, force))
        if pid in self.immortal:
            return
        if not force and pid in self.stubborn:
            return
        if pid in self.listeners:
            self.listeners.remove(pid)


class FakeProcess:
    """Just enough of subprocess.Popen for the supervisor."""

    _pids = itertools.count(40000)

    def __init__(self, argv, **kwargs):
        self.argv = argv
        self.kwargs = kwargs
        self.pid = next(self._pids)
        self.returncode: Optional[int] = None
        self.ignore_term = False
        self.terminated = False
        self.killed = False

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        if not self.ignore_term:
            self.returncode = -15

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired(self.argv, timeout)
        return self.returncode

    def exit(self, code: int = 0) -> None:
        """Simulate the gateway exiting on its own."""
        self.returncode = code


class FakePopen:
    """Callable standing in for subprocess.Popen; remembers what it spawned."""

    def __init__(self, error: Optional[OSError] = None):
        self.error = error
        self.spawned: list[FakeProcess] = []

    def __call__(self, argv, **kwargs) -> FakeProcess:
        if self.error is not None:
            raise self.error
        proc = FakeProcess(argv, **kwargs)
        self.spawned.append(proc)
        return proc


@pytest.fixture(autouse=True)
def isolated_data_root(tmp_path: Path, monkeypatch) -> Path:
    """Keep every test away from the real app-data directory."""
    root = tmp_path / "appdata"
    root.mkdir()
    monkeypatch.setenv("KIRO_SIDECAR_DATA_ROOT", str(root))
    return root


@pytest.fixture
def sidecar_home(tmp_path: Path) -> Path:
    home = tmp_path / ".kiro-sidecar"
    home.mkdir()
    return home


def write_accounts(path: Path, accounts) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(accounts, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def accounts_file(tmp_path: Path) -> Path:
    """Shared store holding the three-record sample."""
    return write_accounts(tmp_path / "shared" / "accounts.json", SAMPLE_ACCOUNTS)


@pytest.fixture
def runtime_binary(tmp_path: Path) -> Path:
    """A non-executable stand-in for the kiro-rs binary."""
    path = tmp_path / "dist" / "kiro-rs"
    path.parent.mkdir(parents=True)
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o644)
    return path


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def fake_popen() -> FakePopen:
    return FakePopen()


@pytest.fixture
def settings(tmp_path: Path, accounts_file: Path, runtime_binary: Path) -> SupervisorSettings:
    return SupervisorSettings(
        port=18080,
        project_path=str(runtime_binary),
        data_dir=tmp_path / "run",
        accounts_file=accounts_file,
        stop_timeout=0.1,
        lock_timeout=1.0,
    )


@pytest.fixture
def supervisor(settings, inspector, fake_popen) -> SidecarSupervisor:
    sup = SidecarSupervisor(
        settings,
        inspector=inspector,
        health_check=lambda port, api_key: True,
        popen=fake_popen,
        register_atexit=False,
    )
    yield sup
    sup.shutdown()
