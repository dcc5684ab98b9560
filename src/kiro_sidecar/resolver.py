"""
Runtime resolver: find the gateway executable to launch.

Search order (first existing file wins):
  1. Explicit override: a file, a build/checkout directory, or a legacy
     Node.js project (resolved to ``node`` + ``src/index.js``)
  2. Bundled runtimes under the resource roots
  3. ``PATH`` and well-known install prefixes

Each stage is a plain function returning candidate paths, and the
existence check is injectable, so the whole search can be exercised
without touching the filesystem.
"""

from __future__ import annotations

import logging
import os
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import RuntimeNotFound
from .paths import platform_tag

logger = logging.getLogger("kiro_sidecar.resolver")

RUNTIME_NAME = "kiro-rs"
NODE_NAME = "node"
WELL_KNOWN_PREFIXES = ("/opt/homebrew/bin", "/usr/local/bin", "/usr/bin")
DEFAULT_RESOURCE_ROOT = Path(__file__).parent / "resources"

PathPredicate = Callable[[Path], bool]
CandidateSource = Callable[[], list]


@dataclass(frozen=True)
class RuntimeCommand:
    """A resolved launch target.

    Attributes:
        executable: Binary or interpreter to exec.
        args: Arguments placed before the gateway options (the entry
            script for interpreted runtimes).
        kind: ``binary`` for kiro-rs, ``node`` for a legacy Node project.
    """

    executable: Path
    args: tuple = ()
    kind: str = "binary"

    def argv(self) -> list[str]:
        return [str(self.executable), *self.args]


def _exe_name(name: str) -> str:
    return f"{name}.exe" if os.name == "nt" else name


# ---------------------------------------------------------------------------
# Candidate sources
# ---------------------------------------------------------------------------


def path_candidates(name: str, path_env: Optional[str] = None) -> list[Path]:
    """Every ``PATH`` directory joined with ``name``."""
    raw = os.environ.get("PATH", "") if path_env is None else path_env
    return [Path(d) / _exe_name(name) for d in raw.split(os.pathsep) if d]


def well_known_candidates(name: str) -> list[Path]:
    """Fixed install prefixes used by Homebrew and distro packages."""
    return [Path(prefix) / name for prefix in WELL_KNOWN_PREFIXES]


def system_candidates(name: str = RUNTIME_NAME) -> list[Path]:
    return path_candidates(name) + well_known_candidates(name)


def resource_roots(
    resource_root: Optional[Path] = None,
    executable: Optional[Path] = None,
) -> list[Path]:
    """Directories that may hold bundled runtimes.

    The application resource root comes first, then the running
    executable's directory and the relative resource folders next to it.
    """
    roots = [resource_root or DEFAULT_RESOURCE_ROOT]
    exe_dir = (executable or Path(sys.executable)).parent
    roots.extend([exe_dir, exe_dir / ".." / "Resources", exe_dir / "resources"])
    return roots


def bundled_candidates(roots: Sequence[Path], tag: Optional[str] = None) -> list[Path]:
    """Relocatable runtime layouts under each resource root."""
    tag = tag or platform_tag()
    name = _exe_name(RUNTIME_NAME)
    relative = Path("offline") / RUNTIME_NAME / tag / name
    candidates: list[Path] = []
    for base in roots:
        candidates.append(base / relative)
        candidates.append(base / "offline" / RUNTIME_NAME / name)
        candidates.append(base / name)
        candidates.append(base / "resources" / relative)
    return candidates


def custom_dir_candidates(directory: Path) -> list[Path]:
    """Conventional locations of the binary inside a checkout or install dir."""
    name = _exe_name(RUNTIME_NAME)
    return [
        directory / name,
        directory / "target" / "release" / name,
        directory / "target" / "debug" / name,
        directory / "bin" / name,
    ]


def node_entrypoint(directory: Path) -> Path:
    return directory / "src" / "index.js"


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class RuntimeResolver:
    """Resolve exactly one runtime from the layered candidate list.

    Args:
        resource_root: Application resource root for bundled runtimes.
        is_file: Existence predicate for candidate files.
        is_dir: Predicate deciding whether the override is a directory.
        sources: Ordered candidate sources searched after the override.
            Defaults to (bundled, system).
        node_sources: Candidate sources for the Node interpreter.
    """

    def __init__(
        self,
        resource_root: Optional[Path] = None,
        is_file: Optional[PathPredicate] = None,
        is_dir: Optional[PathPredicate] = None,
        sources: Optional[Sequence[CandidateSource]] = None,
        node_sources: Optional[Sequence[CandidateSource]] = None,
    ) -> None:
        self.resource_root = resource_root
        self._is_file = is_file or (lambda p: p.is_file())
        self._is_dir = is_dir or (lambda p: p.is_dir())
        self.sources = tuple(sources) if sources is not None else (
            self._bundled,
            system_candidates,
        )
        self.node_sources = tuple(node_sources) if node_sources is not None else (
            lambda: system_candidates(NODE_NAME),
        )

    def _bundled(self) -> list[Path]:
        return bundled_candidates(resource_roots(self.resource_root))

    def looks_like_node_project(self, path: Path) -> bool:
        return self._is_file(path / "package.json") and self._is_file(node_entrypoint(path))

    def _first_file(self, sources: Sequence[CandidateSource], checked: list[str]) -> Optional[Path]:
        for source in sources:
            for candidate in source():
                checked.append(str(candidate))
                if self._is_file(candidate):
                    return candidate
        return None

    def _resolve_override(
        self, override: Path, checked: list[str]
    ) -> tuple[Optional[RuntimeCommand], Optional[str]]:
        if self._is_dir(override) and self.looks_like_node_project(override):
            node = self._first_file(self.node_sources, checked)
            if node is not None:
                return RuntimeCommand(node, (str(node_entrypoint(override)),), "node"), None
            return None, (
                f"legacy Node project at {override} needs a '{NODE_NAME}' "
                "interpreter on PATH"
            )

        checked.append(str(override))
        if self._is_file(override):
            return RuntimeCommand(override), None

        if self._is_dir(override):
            for candidate in custom_dir_candidates(override):
                checked.append(str(candidate))
                if self._is_file(candidate):
                    return RuntimeCommand(candidate), None

        return None, f"runtime path not found or invalid: {override}"

    def resolve(self, override: Optional[str] = None) -> RuntimeCommand:
        """Return the runtime to launch.

        Raises:
            RuntimeNotFound: Nothing matched. The message lists every path
                checked, prefixed by the override's own error if one was
                given.
        """
        checked: list[str] = []
        custom_error: Optional[str] = None

        trimmed = (override or "").strip()
        if trimmed:
            command, custom_error = self._resolve_override(Path(trimmed).expanduser(), checked)
            if command is not None:
                logger.info("Using runtime from explicit path: %s", command.executable)
                return command
            logger.warning("%s; falling back to bundled runtime", custom_error)

        found = self._first_file(self.sources, checked)
        if found is not None:
            logger.info("Using runtime %s", found)
            return RuntimeCommand(found)

        prefix = f"{custom_error}; " if custom_error else ""
        raise RuntimeNotFound(
            f"{prefix}Kiro.rs executable not found. Reinstall the offline bundle "
            f"or set a custom runtime path. Checked: {', '.join(checked)}"
        )


def ensure_executable(path: Path) -> None:
    """Add execute bits to ``path`` if it has none. No-op off POSIX.

    Raises:
        RuntimeNotFound: Metadata could not be read or chmod failed.
    """
    if os.name != "posix":
        return
    try:
        mode = path.stat().st_mode
    except OSError as exc:
        raise RuntimeNotFound(f"read metadata failed: {exc}") from exc

    if mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH):
        return
    try:
        path.chmod(stat.S_IMODE(mode) | 0o755)
    except OSError as exc:
        raise RuntimeNotFound(f"set execute permission failed: {exc}") from exc
    logger.info("Marked %s executable", path)
