"""Per-platform locations shared with the account manager.

The account manager and the gateway both live under the OS app-data
root, in a ``.kiro-account-manager`` folder:

    <data_root>/.kiro-account-manager/accounts.json   (shared store)
    <data_root>/.kiro-account-manager/kiro-rs/        (runtime data dir)

Set ``KIRO_SIDECAR_DATA_ROOT`` to relocate the whole tree (tests do).
"""

from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Optional

MANAGER_DIR = ".kiro-account-manager"
ACCOUNTS_FILE = "accounts.json"
RUNTIME_DIR = "kiro-rs"

CONFIG_FILE = "config.json"
CREDENTIALS_FILE = "credentials.json"
LOG_FILE = "kiro2api.log"


def _system() -> str:
    """Canonical platform name."""
    return platform.system()


def _home_fallback() -> Path:
    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or "."
    return Path(home)


def data_root() -> Path:
    """Return the per-user application data root.

    Linux uses ``$XDG_DATA_HOME`` (``~/.local/share``), macOS uses
    ``~/Library/Application Support`` and Windows uses ``%APPDATA%``.
    Falls back to the home directory when the convention is unavailable.
    """
    override = os.environ.get("KIRO_SIDECAR_DATA_ROOT")
    if override:
        return Path(override).expanduser()

    system = _system()
    if system == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata)
    elif system == "Darwin":
        home = os.environ.get("HOME")
        if home:
            return Path(home) / "Library" / "Application Support"
    else:
        xdg = os.environ.get("XDG_DATA_HOME")
        if xdg:
            return Path(xdg)
        home = os.environ.get("HOME")
        if home:
            return Path(home) / ".local" / "share"

    return _home_fallback()


def account_store_path(root: Optional[Path] = None) -> Path:
    """Path of the shared ``accounts.json`` written by the account manager."""
    return (root or data_root()) / MANAGER_DIR / ACCOUNTS_FILE


def default_runtime_data_dir(root: Optional[Path] = None) -> Path:
    """Default working directory for the gateway (config, credentials, log)."""
    return (root or data_root()) / MANAGER_DIR / RUNTIME_DIR


def platform_tag() -> str:
    """Folder name of the bundled runtime for this host, e.g. ``darwin-aarch64``."""
    system = _system().lower()
    machine = platform.machine().lower()
    arch = {
        "arm64": "aarch64",
        "aarch64": "aarch64",
        "x86_64": "x86_64",
        "amd64": "x86_64",
    }.get(machine, machine)
    return f"{system}-{arch}"
