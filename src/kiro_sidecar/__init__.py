"""
kiro-sidecar: supervisor for the local Kiro API gateway.

Resolves the gateway runtime, materializes credentials from the
shared account store, arbitrates the listen port, and keeps exactly
one gateway process alive until it is told to stop.
"""

import os

__version__ = "0.1.0"

SIDECAR_HOME = os.environ.get("KIRO_SIDECAR_HOME", "~/.kiro-sidecar")
