"""
Port arbiter: make the gateway port free before spawning.

Listeners on the port are classified as one of our own earlier gateway
instances (by marker path or by process signature) or as foreign. A
foreign listener aborts the start; we never signal a process we do not
recognize. Our own stale instances get SIGTERM, then SIGKILL, and the
port is checked once more.

Process discovery sits behind ``ProcessInspector`` so the arbitration
logic can run against a fake in tests and against a no-op on platforms
without ``lsof``/``ps``.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Protocol

from .errors import PortInUse, PortQueryFailed, PortReleaseFailed

logger = logging.getLogger("kiro_sidecar.ports")

TERM_GRACE_SECONDS = 0.4
KILL_GRACE_SECONDS = 0.2

_SIGNATURES = ("kiro-rs", "kiro2api")


class ProcessInspector(Protocol):
    """OS process discovery used by the arbiter."""

    supported: bool

    def list_listeners(self, port: int) -> list[int]:
        ...

    def command_line(self, pid: int) -> Optional[str]:
        ...

    def terminate(self, pid: int, force: bool = False) -> None:
        ...


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, capture_output=True, text=True, timeout=10)


class PosixProcessInspector:
    """``lsof`` / ``ps`` / ``os.kill`` implementation for Linux and macOS."""

    supported = True

    def list_listeners(self, port: int) -> list[int]:
        try:
            result = _run(["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN", "-t"])
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise PortQueryFailed(f"failed to query listeners on port {port}: {exc}") from exc

        if result.returncode != 0:
            # lsof exits 1 when nothing matches
            if result.returncode == 1:
                return []
            raise PortQueryFailed(
                f"failed to query listeners on port {port}: {result.stderr.strip()}"
            )

        pids = []
        for line in result.stdout.splitlines():
            try:
                pids.append(int(line.strip()))
            except ValueError:
                continue
        return pids

    def command_line(self, pid: int) -> Optional[str]:
        try:
            result = _run(["ps", "-p", str(pid), "-o", "command="])
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("ps failed for PID %d: %s", pid, exc)
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def terminate(self, pid: int, force: bool = False) -> None:
        sig = signal.SIGKILL if force else signal.SIGTERM
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError as exc:
            logger.warning("Not permitted to signal PID %d: %s", pid, exc)


class NullProcessInspector:
    """Stand-in for platforms where listeners cannot be enumerated."""

    supported = False

    def list_listeners(self, port: int) -> list[int]:
        return []

    def command_line(self, pid: int) -> Optional[str]:
        return None

    def terminate(self, pid: int, force: bool = False) -> None:
        return None


def default_inspector() -> ProcessInspector:
    """The inspector for the running platform."""
    if os.name == "posix":
        return PosixProcessInspector()
    return NullProcessInspector()


@dataclass
class PortReclaimResult:
    """Outcome of a successful arbitration.

    Attributes:
        port: The arbitrated port.
        checked: False when the platform could not enumerate listeners
            and the port was assumed free.
        terminated: PIDs sent SIGTERM.
        killed: PIDs that needed SIGKILL.
    """

    port: int
    checked: bool = True
    terminated: list[int] = field(default_factory=list)
    killed: list[int] = field(default_factory=list)


def matches_signature(command_line: str) -> bool:
    """Does this command line look like a gateway instance?"""
    cmd = command_line.casefold()
    if any(sig in cmd for sig in _SIGNATURES):
        return True
    return "node" in cmd and "src/index.js" in cmd


def is_own_process(
    pid: int,
    inspector: ProcessInspector,
    markers: Iterable[Path] = (),
) -> bool:
    """True if ``pid`` is one of ours: its command line carries a marker
    path or matches the gateway signature."""
    cmd = inspector.command_line(pid)
    if cmd is None:
        return False
    lowered = cmd.casefold()
    if any(str(marker).casefold() in lowered for marker in markers):
        return True
    return matches_signature(cmd)


def reclaim_port(
    port: int,
    markers: Iterable[Path] = (),
    inspector: Optional[ProcessInspector] = None,
    term_grace: float = TERM_GRACE_SECONDS,
    kill_grace: float = KILL_GRACE_SECONDS,
    sleep=time.sleep,
) -> PortReclaimResult:
    """Free ``port`` of our own stale instances.

    Args:
        port: TCP port the gateway will bind.
        markers: Paths (data dir, executable) that identify our instances.
        inspector: Process discovery backend.
        term_grace: Seconds to wait after SIGTERM.
        kill_grace: Seconds to wait after SIGKILL.
        sleep: Injectable sleep for tests.

    Raises:
        PortInUse: A foreign process listens on the port. Nothing was signalled.
        PortReleaseFailed: Something still listens after SIGKILL.
        PortQueryFailed: Listener enumeration itself failed.
    """
    inspector = inspector or default_inspector()
    markers = [m for m in markers if m]
    result = PortReclaimResult(port=port)

    if not inspector.supported:
        logger.warning(
            "Listener enumeration unsupported on this platform, port %d not checked", port
        )
        result.checked = False
        return result

    pids = inspector.list_listeners(port)
    if not pids:
        return result

    own, foreign = [], []
    for pid in pids:
        (own if is_own_process(pid, inspector, markers) else foreign).append(pid)

    if foreign:
        logger.error("Port %d held by foreign process(es) %s", port, foreign)
        raise PortInUse(port, foreign)

    logger.info("Terminating stale gateway process(es) %s on port %d", own, port)
    for pid in own:
        inspector.terminate(pid, force=False)
    result.terminated = list(own)
    sleep(term_grace)

    for pid in inspector.list_listeners(port):
        if is_own_process(pid, inspector, markers):
            logger.warning("PID %d ignored SIGTERM, sending SIGKILL", pid)
            inspector.terminate(pid, force=True)
            result.killed.append(pid)
    sleep(kill_grace)

    remaining = inspector.list_listeners(port)
    if remaining:
        raise PortReleaseFailed(port, remaining)
    return result
