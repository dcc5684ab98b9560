"""
Credential materializer: shared account store to gateway snapshot.

The account manager owns ``accounts.json``; we only ever read it, once,
at the moment a start is requested. Each record with a refresh token
becomes one gateway credential, keeping the record's original position
as its priority. The result is written as ``config.json`` and
``credentials.json`` into the run's data directory.

Known gap: each file is written in one call but the pair is not
written atomically, and a torn single-file write is not guarded against.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .errors import ConfigInvalid, ConfigMissing, MaterializeFailed, NoUsableCredentials
from .models import DEFAULT_REGION, AccountRecord, Credential, SidecarConfig
from .paths import CONFIG_FILE, CREDENTIALS_FILE, account_store_path

logger = logging.getLogger("kiro_sidecar.materializer")

AUTH_SOCIAL = "social"
AUTH_IDC = "idc"

_IDC_PROVIDER_MARKERS = ("builder", "enterprise")
_DISABLED_STATUS_MARKERS = ("banned", "suspend", "封禁")
_SUBSCRIPTION_TITLE_KEYS = ("subscriptionTitle", "subscriptionName", "subscriptionType")
LOCAL_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"

# fromisoformat on 3.10 only takes 3 or 6 fraction digits
_FRACTION_RE = re.compile(r"\.(\d+)(?=[+-]\d{2}:\d{2}$)")


@dataclass
class MaterializedRuntime:
    """Where a snapshot was written and what it contained."""

    config_path: Path
    credentials_path: Path
    accounts_file: Path
    credential_count: int


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_expires_at(raw: Optional[str]) -> Optional[str]:
    """Normalize an expiry timestamp to RFC 3339, or drop it.

    Accepts RFC 3339 (with ``Z`` or a numeric offset) and the account
    manager's local ``YYYY/MM/DD HH:MM:SS`` form, which is interpreted in
    the host's local time zone. Anything else returns None.
    """
    raw = _clean(raw)
    if raw is None:
        return None

    iso = raw[:-1] + "+00:00" if raw[-1] in "Zz" else raw
    iso = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), iso)
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        parsed = None
    if parsed is not None and parsed.tzinfo is not None:
        return parsed.isoformat()

    try:
        naive = datetime.strptime(raw, LOCAL_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return naive.astimezone().isoformat()


def classify_auth_method(record: AccountRecord) -> str:
    """``idc`` for enterprise/Builder ID accounts, ``social`` otherwise."""
    provider = (record.provider or AUTH_SOCIAL).casefold()
    if any(marker in provider for marker in _IDC_PROVIDER_MARKERS):
        return AUTH_IDC
    if record.client_id is not None and record.client_secret is not None:
        return AUTH_IDC
    return AUTH_SOCIAL


def is_disabled_status(status: Optional[str]) -> bool:
    lowered = (status or "").casefold()
    return any(marker in lowered for marker in _DISABLED_STATUS_MARKERS)


def _subscription_title(usage: Optional[dict[str, Any]]) -> Optional[str]:
    info = (usage or {}).get("subscriptionInfo")
    if not isinstance(info, dict):
        return None
    for key in _SUBSCRIPTION_TITLE_KEYS:
        if key in info:
            value = info[key]
            return value if isinstance(value, str) else None
    return None


def account_to_credential(
    record: AccountRecord,
    priority: int,
    default_region: str = DEFAULT_REGION,
) -> Optional[Credential]:
    """Convert one account record, or return None if it has no refresh token."""
    refresh_token = _clean(record.refresh_token)
    if refresh_token is None:
        return None

    return Credential(
        id=priority + 1,
        refresh_token=refresh_token,
        auth_method=classify_auth_method(record),
        priority=priority,
        disabled=is_disabled_status(record.status),
        access_token=_clean(record.access_token),
        profile_arn=_clean(record.profile_arn),
        expires_at=normalize_expires_at(record.expires_at),
        client_id=_clean(record.client_id),
        client_secret=_clean(record.client_secret),
        region=_clean(record.region) or default_region,
        email=_clean(record.email),
        subscription_title=_subscription_title(record.usage_data),
    )


def load_accounts(path: Optional[Path] = None) -> list[AccountRecord]:
    """Read and validate the shared account store.

    Raises:
        ConfigMissing: The store does not exist.
        ConfigInvalid: It could not be read or is not a list of records.
            A read racing the account manager's write lands here too; it
            is never retried.
    """
    path = path or account_store_path()
    if not path.exists():
        raise ConfigMissing(f"shared accounts file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigInvalid(f"read shared accounts failed ({path}): {exc}") from exc

    try:
        raw = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ConfigInvalid(f"parse shared accounts failed: {exc}") from exc

    if not isinstance(raw, list):
        raise ConfigInvalid(
            f"parse shared accounts failed: expected a list of accounts, got {type(raw).__name__}"
        )

    records: list[AccountRecord] = []
    for idx, item in enumerate(raw):
        try:
            records.append(AccountRecord.model_validate(item))
        except ValidationError as exc:
            raise ConfigInvalid(f"parse shared accounts failed at record {idx}: {exc}") from exc
    return records


def build_credentials(
    records: list[AccountRecord],
    default_region: str = DEFAULT_REGION,
) -> list[Credential]:
    """Convert records in store order, skipping those without a token.

    Raises:
        NoUsableCredentials: No record had a refresh token.
    """
    credentials = []
    for idx, record in enumerate(records):
        cred = account_to_credential(record, idx, default_region)
        if cred is None:
            logger.debug("Skipping account #%d: no refresh token", idx)
            continue
        credentials.append(cred)

    if not credentials:
        raise NoUsableCredentials(
            "no valid account with refresh token found in shared accounts.json"
        )
    return credentials


def preview_credentials(
    accounts_file: Optional[Path] = None,
    default_region: str = DEFAULT_REGION,
) -> list[Credential]:
    """Run the conversion without writing anything."""
    return build_credentials(load_accounts(accounts_file), default_region)


def write_runtime_files(
    data_dir: Path,
    config: SidecarConfig,
    credentials: list[Credential],
) -> tuple[Path, Path]:
    """Write ``config.json`` and ``credentials.json``, replacing old ones.

    Raises:
        MaterializeFailed: The directory or either file could not be written.
    """
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise MaterializeFailed(f"create data dir failed: {exc}") from exc

    config_path = data_dir / CONFIG_FILE
    credentials_path = data_dir / CREDENTIALS_FILE

    config_json = json.dumps(config.model_dump(by_alias=True), indent=2, ensure_ascii=False)
    try:
        config_path.write_text(config_json, encoding="utf-8")
    except OSError as exc:
        raise MaterializeFailed(f"write config failed: {exc}") from exc

    credentials_json = json.dumps(
        [c.model_dump(by_alias=True) for c in credentials], indent=2, ensure_ascii=False
    )
    try:
        credentials_path.write_text(credentials_json, encoding="utf-8")
    except OSError as exc:
        raise MaterializeFailed(f"write credentials failed: {exc}") from exc

    return config_path, credentials_path


def materialize(
    data_dir: Path,
    config: SidecarConfig,
    accounts_file: Optional[Path] = None,
) -> MaterializedRuntime:
    """Build the snapshot for ``config`` and write it into ``data_dir``."""
    accounts_file = accounts_file or account_store_path()
    credentials = build_credentials(load_accounts(accounts_file), config.region)
    config_path, credentials_path = write_runtime_files(data_dir, config, credentials)
    logger.info(
        "Materialized %d credential(s) from %s into %s",
        len(credentials),
        accounts_file,
        data_dir,
    )
    return MaterializedRuntime(
        config_path=config_path,
        credentials_path=credentials_path,
        accounts_file=accounts_file,
        credential_count=len(credentials),
    )
