"""
Gateway supervisor. Owns the one running gateway process.

State machine::

    IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE
                        RUNNING -> IDLE        (gateway exited on its own)

The optional ``RunningInstance`` slot is guarded by a single lock that
is only held for in-memory updates. Resolution, materialization, port
arbitration, spawning and health probing all happen outside it, so
``status`` and ``stop`` see either the previous state or a fully
recorded new instance.

Every path that drops an instance from the slot also terminates its
process (SIGTERM, wait, SIGKILL, wait). ``shutdown`` is registered with
``atexit`` so the gateway does not outlive the supervisor.
"""

from __future__ import annotations

import atexit
import logging
import os
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

from .errors import AlreadyRunning, LockUnavailable, SpawnFailed
from .health import probe
from .materializer import materialize
from .models import SidecarConfig, SidecarStatus, StartParams
from .paths import LOG_FILE, account_store_path
from .ports import ProcessInspector, default_inspector, reclaim_port
from .resolver import RuntimeResolver, ensure_executable
from .settings import LaunchPlan, SupervisorSettings, merge_launch

logger = logging.getLogger("kiro_sidecar.supervisor")

HealthCheck = Callable[[int, str], bool]


class SupervisorState(str, Enum):
    """Lifecycle phase of the supervised gateway."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class RunningInstance:
    """A gateway process we spawned and still believe to be alive."""

    process: subprocess.Popen
    pid: int
    port: int
    executable_path: Path
    log_path: Path
    accounts_file: Path
    api_key: str
    data_dir: Path

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def terminate(self, timeout: float) -> None:
        """SIGTERM, wait up to ``timeout``, then SIGKILL and wait.

        Always reaps the child, even when it has already exited.
        """
        if self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=timeout)
                return
            except subprocess.TimeoutExpired:
                logger.warning("Gateway PID %d ignored SIGTERM, killing", self.pid)
                self.process.kill()
        self.process.wait()


@dataclass(frozen=True)
class _Snapshot:
    pid: int
    port: int
    executable_path: Path
    log_path: Path
    accounts_file: Path
    api_key: str


class SidecarSupervisor:
    """Start, inspect and stop the gateway.

    Args:
        settings: Saved defaults merged under every start.
        resolver: Runtime resolver (defaults honour ``settings.resource_root``).
        inspector: Process discovery backend for port arbitration.
        health_check: ``(port, api_key) -> bool`` liveness probe.
        popen: Process factory, ``subprocess.Popen`` by default.
        register_atexit: Tear the gateway down when the interpreter exits.
    """

    def __init__(
        self,
        settings: Optional[SupervisorSettings] = None,
        resolver: Optional[RuntimeResolver] = None,
        inspector: Optional[ProcessInspector] = None,
        health_check: Optional[HealthCheck] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        register_atexit: bool = True,
    ) -> None:
        self.settings = settings or SupervisorSettings()
        self.resolver = resolver or RuntimeResolver(resource_root=self.settings.resource_root)
        self.inspector = inspector or default_inspector()
        self._health_check = health_check or self._probe
        self._popen = popen

        self._lock = threading.Lock()
        self._instance: Optional[RunningInstance] = None
        self._state = SupervisorState.IDLE
        self._notice: Optional[str] = None

        if register_atexit:
            atexit.register(self.shutdown)

    # ------------------------------------------------------------------
    # Locking and bookkeeping
    # ------------------------------------------------------------------

    @property
    def state(self) -> SupervisorState:
        return self._state

    @contextmanager
    def _guard(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.settings.lock_timeout):
            raise LockUnavailable(
                f"supervisor lock unavailable after {self.settings.lock_timeout}s"
            )
        try:
            yield
        finally:
            self._lock.release()

    def _reap_if_exited(self) -> None:
        """Drop the instance if its process has exited. Caller holds the lock."""
        instance = self._instance
        if instance is None or instance.is_alive():
            return
        logger.warning(
            "Gateway PID %d exited with code %s", instance.pid, instance.process.returncode
        )
        instance.terminate(0)
        self._instance = None
        self._state = SupervisorState.IDLE

    def _probe(self, port: int, api_key: str) -> bool:
        return probe(
            port,
            api_key,
            path=self.settings.health_path,
            header=self.settings.health_header,
            timeout=self.settings.health_timeout,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start(self, params: Optional[StartParams] = None) -> SidecarStatus:
        """Resolve, materialize, reclaim the port, spawn and record.

        Raises:
            AlreadyRunning: A live gateway is recorded or a start is in flight.
            SidecarError: Any step failed; nothing was recorded and the
                supervisor is back to IDLE.
        """
        plan = merge_launch(params, self.settings)

        with self._guard():
            self._reap_if_exited()
            if self._instance is not None:
                raise AlreadyRunning(
                    f"Kiro2API service is already running (PID {self._instance.pid})"
                )
            if self._state is SupervisorState.STARTING:
                raise AlreadyRunning("Kiro2API service is already starting")
            self._state = SupervisorState.STARTING
            self._notice = None

        try:
            instance = self._launch(plan)
            try:
                with self._guard():
                    self._instance = instance
                    self._state = SupervisorState.RUNNING
            except BaseException:
                instance.terminate(self.settings.stop_timeout)
                raise
        except BaseException:
            with self._lock:
                if self._state is SupervisorState.STARTING:
                    self._state = SupervisorState.IDLE
            raise

        logger.info(
            "Gateway started: PID %d on port %d (log: %s)",
            instance.pid,
            instance.port,
            instance.log_path,
        )
        return self.status()

    def _launch(self, plan: LaunchPlan) -> RunningInstance:
        command = self.resolver.resolve(plan.project_path)
        ensure_executable(command.executable)

        config = SidecarConfig(
            port=plan.port,
            region=plan.region,
            kiro_version=plan.kiro_version,
            api_key=plan.api_key,
            admin_api_key=plan.admin_key,
            proxy_url=plan.proxy_url,
        )
        accounts_file = self.settings.accounts_file or account_store_path()
        runtime = materialize(plan.data_dir, config, accounts_file)

        reclaimed = reclaim_port(
            plan.port,
            markers=(plan.data_dir, command.executable),
            inspector=self.inspector,
        )
        if not reclaimed.checked:
            self._notice = (
                f"port {plan.port} was not checked for other listeners "
                "(unsupported on this platform)"
            )

        log_path = plan.data_dir / LOG_FILE
        argv = command.argv() + [
            "--config",
            str(runtime.config_path),
            "--credentials",
            str(runtime.credentials_path),
        ]
        env = dict(os.environ, RUST_LOG="info")

        try:
            log_file = open(log_path, "ab")
        except OSError as exc:
            raise SpawnFailed(f"open log file failed: {exc}") from exc

        with log_file:
            try:
                process = self._popen(
                    argv,
                    cwd=str(plan.data_dir),
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=os.name == "posix",
                )
            except OSError as exc:
                raise SpawnFailed(
                    f"failed to start Kiro2API service with runtime "
                    f"'{command.executable}': {exc}"
                ) from exc

        return RunningInstance(
            process=process,
            pid=process.pid,
            port=plan.port,
            executable_path=command.executable,
            log_path=log_path,
            accounts_file=runtime.accounts_file,
            api_key=plan.api_key,
            data_dir=plan.data_dir,
        )

    def status(self) -> SidecarStatus:
        """Report the recorded gateway, probing its health outside the lock.

        Raises:
            LockUnavailable: Only if the supervisor lock could not be taken.
        """
        with self._guard():
            self._reap_if_exited()
            instance = self._instance
            snap = None
            if instance is not None:
                snap = _Snapshot(
                    pid=instance.pid,
                    port=instance.port,
                    executable_path=instance.executable_path,
                    log_path=instance.log_path,
                    accounts_file=instance.accounts_file,
                    api_key=instance.api_key,
                )
            notice = self._notice

        if snap is None:
            return SidecarStatus()

        healthy = self._health_check(snap.port, snap.api_key)
        return SidecarStatus(
            running=True,
            pid=snap.pid,
            port=snap.port,
            url=f"http://127.0.0.1:{snap.port}",
            project_path=str(snap.executable_path),
            log_path=str(snap.log_path),
            shared_accounts_file=str(snap.accounts_file),
            healthy=healthy,
            message=notice,
        )

    def stop(self, port: Optional[int] = None) -> SidecarStatus:
        """Stop the recorded gateway and sweep the port for orphans.

        The sweep uses signature matching only, which catches gateways
        left behind by an earlier supervisor that lost its record.
        Stopping when nothing runs is a no-op.
        """
        with self._guard():
            instance, self._instance = self._instance, None
            if instance is not None:
                self._state = SupervisorState.STOPPING

        try:
            if instance is not None:
                logger.info("Stopping gateway PID %d", instance.pid)
                instance.terminate(self.settings.stop_timeout)
            target = port or (instance.port if instance else self.settings.port)
            reclaim_port(target, inspector=self.inspector)
        finally:
            with self._lock:
                if self._state is SupervisorState.STOPPING:
                    self._state = SupervisorState.IDLE

        return self.status()

    def shutdown(self) -> None:
        """Terminate any recorded gateway. Safe to call repeatedly."""
        with self._lock:
            instance, self._instance = self._instance, None
            if self._state is not SupervisorState.STARTING:
                self._state = SupervisorState.IDLE
        if instance is not None:
            logger.info("Supervisor shutting down, terminating gateway PID %d", instance.pid)
            instance.terminate(self.settings.stop_timeout)

    def __enter__(self) -> "SidecarSupervisor":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()


def setup_logging(home: Path, verbose: bool = False) -> Path:
    """Send supervisor logs to ``<home>/logs/supervisor.log``."""
    log_dir = home / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "supervisor.log"

    handler = logging.FileHandler(log_file)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    )
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    return log_file
