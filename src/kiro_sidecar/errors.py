"""Error kinds raised by the sidecar supervisor.

Every failure carries a human-readable message that is safe to show
as-is: checked paths, PIDs, and the underlying OS error text.
"""

from __future__ import annotations

from typing import Iterable


class SidecarError(Exception):
    """Base class for all supervisor failures."""

    kind = "SidecarError"

    def to_dict(self) -> dict:
        """Serializable form used by the control API."""
        return {"error": str(self), "kind": self.kind}


class RuntimeNotFound(SidecarError):
    kind = "RuntimeNotFound"


class ConfigMissing(SidecarError):
    kind = "ConfigMissing"


class ConfigInvalid(SidecarError):
    kind = "ConfigInvalid"


class NoUsableCredentials(SidecarError):
    kind = "NoUsableCredentials"


class MaterializeFailed(SidecarError):
    kind = "MaterializeFailed"


class PortQueryFailed(SidecarError):
    kind = "PortQueryFailed"


class _PortError(SidecarError):
    """Port failure that names the offending PIDs."""

    def __init__(self, port: int, pids: Iterable[int], message: str):
        self.port = port
        self.pids = sorted(pids)
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["port"] = self.port
        data["pids"] = self.pids
        return data


class PortInUse(_PortError):
    """A process we do not recognize is listening on the port."""

    kind = "PortInUse"

    def __init__(self, port: int, pids: Iterable[int]):
        pids = sorted(pids)
        super().__init__(
            port,
            pids,
            f"port {port} is already in use by non-Kiro2API process(es): {pids}",
        )


class PortReleaseFailed(_PortError):
    """Our own stale instance survived SIGTERM and SIGKILL."""

    kind = "PortReleaseFailed"

    def __init__(self, port: int, pids: Iterable[int]):
        pids = sorted(pids)
        super().__init__(
            port,
            pids,
            f"failed to release port {port} after terminating stale "
            f"Kiro2API process(es): {pids}",
        )


class AlreadyRunning(SidecarError):
    kind = "AlreadyRunning"


class SpawnFailed(SidecarError):
    kind = "SpawnFailed"


class LockUnavailable(SidecarError):
    kind = "LockUnavailable"
