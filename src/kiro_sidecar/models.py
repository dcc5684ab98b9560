"""
Pydantic models for everything that crosses a boundary.

The gateway reads camelCase JSON, the account manager writes camelCase
JSON, and the control API speaks camelCase JSON. Python code uses the
snake_case field names; ``by_alias=True`` produces the wire form.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_API_KEY = "sk-default-key"
DEFAULT_ADMIN_KEY = "admin-default-key"
DEFAULT_REGION = "us-east-1"
DEFAULT_KIRO_VERSION = "0.9.2"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SidecarConfig(_CamelModel):
    """The gateway's ``config.json``. Regenerated on every start."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    region: str = DEFAULT_REGION
    kiro_version: str = DEFAULT_KIRO_VERSION
    api_key: str = DEFAULT_API_KEY
    admin_api_key: str = DEFAULT_ADMIN_KEY
    proxy_url: Optional[str] = None
    load_balancing_mode: str = "priority"
    tls_backend: str = "rustls"


class Credential(_CamelModel):
    """One entry of the gateway's ``credentials.json``.

    ``priority`` is the account's zero-based position in the shared
    store and ``id`` is ``priority + 1``.
    """

    id: int
    refresh_token: str
    auth_method: str
    priority: int
    disabled: bool = False
    access_token: Optional[str] = None
    profile_arn: Optional[str] = None
    expires_at: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    region: Optional[str] = None
    email: Optional[str] = None
    subscription_title: Optional[str] = None


class AccountRecord(_CamelModel):
    """A single record of the shared account store.

    Only the fields the gateway needs are modelled; the account manager
    is free to add more. Both camelCase and snake_case keys are accepted.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    email: Optional[str] = None
    status: Optional[str] = None
    provider: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token: Optional[str] = None
    profile_arn: Optional[str] = None
    expires_at: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    region: Optional[str] = None
    usage_data: Optional[dict[str, Any]] = None


class StartParams(_CamelModel):
    """Caller-supplied overrides for a single start.

    Anything left as None falls back to the saved settings, then to the
    built-in defaults.
    """

    project_path: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    api_key: Optional[str] = None
    admin_key: Optional[str] = None
    data_dir: Optional[str] = None
    region: Optional[str] = None
    kiro_version: Optional[str] = None
    proxy_url: Optional[str] = None


class SidecarStatus(_CamelModel):
    """What status/start/stop report back to the caller."""

    running: bool = False
    pid: Optional[int] = None
    port: Optional[int] = None
    url: Optional[str] = None
    project_path: Optional[str] = None
    log_path: Optional[str] = None
    shared_accounts_file: Optional[str] = None
    healthy: bool = False
    message: Optional[str] = None

    def to_wire(self) -> dict:
        """camelCase dict for JSON output."""
        return self.model_dump(by_alias=True)
