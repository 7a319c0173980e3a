"""Client configuration loading.

Configuration can come from a mapping, a YAML file, or the process
environment. All three paths validate through :meth:`WebOSClientConfig.from_mapping`.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import aiohttp
import yaml

from .errors import ConfigError
from .storage import FileTokenStorage, TokenStorage, VaultTokenStorage
from .ws import build_ssl_context

DEFAULT_URL: Final = "ws://lgwebostv:3000"
DEFAULT_TIMEOUT: Final = 15.0
DEFAULT_RECONNECT_INTERVAL: Final = 5.0
DEFAULT_CONNECT_TIMEOUT: Final = 10.0
DEFAULT_PING_INTERVAL: Final = 20


@dataclass(frozen=True)
class VaultConfig:
    """Location and credentials of the Vault secret holding the token."""

    address: str
    token: str
    kv_mount: str = "secret"
    secret_path: str = "webos-link"
    ca_cert: str | None = None


@dataclass(frozen=True)
class WebOSClientConfig:
    """Settings for one TV connection.

    Attributes:
        url: Control channel URL, e.g. ``ws://192.168.1.20:3000``.
        timeout: Seconds to wait for a request response.
        reconnect_interval: Fixed retry delay in seconds, 0 disables retries.
        connect_timeout: Seconds allowed for one websocket dial.
        ping_interval: Websocket keepalive ping interval, None disables it.
        verify_ssl: Verify the TV certificate on ``wss://`` URLs.
        vault: Vault token storage settings, if tokens live in Vault.
        token_file: Token file path when Vault is not configured.
    """

    url: str = DEFAULT_URL
    timeout: float = DEFAULT_TIMEOUT
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    ping_interval: int | None = DEFAULT_PING_INTERVAL
    verify_ssl: bool = False
    vault: VaultConfig | None = None
    token_file: Path | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> WebOSClientConfig:
        """Build a config from a plain mapping, validating every field."""
        url = data.get("url", DEFAULT_URL)
        if not isinstance(url, str) or not url.startswith(("ws://", "wss://")):
            raise ConfigError(f"url must be a ws:// or wss:// URL, got {url!r}")

        vault_data = data.get("vault")
        vault: VaultConfig | None = None
        if vault_data is not None:
            if not isinstance(vault_data, Mapping):
                raise ConfigError("vault must be a mapping")
            vault = _parse_vault(vault_data)

        token_file = data.get("token_file")
        return cls(
            url=url,
            timeout=_positive_float(data, "timeout", DEFAULT_TIMEOUT),
            reconnect_interval=_non_negative_float(
                data, "reconnect_interval", DEFAULT_RECONNECT_INTERVAL
            ),
            connect_timeout=_positive_float(
                data, "connect_timeout", DEFAULT_CONNECT_TIMEOUT
            ),
            ping_interval=_ping_interval(data),
            verify_ssl=_as_bool(data.get("verify_ssl", False)),
            vault=vault,
            token_file=Path(token_file) if token_file else None,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WebOSClientConfig:
        """Build a config from environment variables.

        ``WEBOS_URL`` wins over ``TV_IP``; Vault is configured only when both
        ``VAULT_ADDR`` and ``VAULT_TOKEN`` are set.
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}

        if env.get("WEBOS_URL"):
            data["url"] = env["WEBOS_URL"]
        elif env.get("TV_IP"):
            data["url"] = f"ws://{env['TV_IP']}:3000"

        for env_name, key in (
            ("WEBOS_TIMEOUT", "timeout"),
            ("WEBOS_RECONNECT", "reconnect_interval"),
            ("WEBOS_CONNECT_TIMEOUT", "connect_timeout"),
            ("WEBOS_VERIFY_SSL", "verify_ssl"),
            ("WEBOS_TOKEN_FILE", "token_file"),
        ):
            if env.get(env_name):
                data[key] = env[env_name]

        if env.get("VAULT_ADDR") and env.get("VAULT_TOKEN"):
            data["vault"] = {
                "address": env["VAULT_ADDR"],
                "token": env["VAULT_TOKEN"],
                "kv_mount": env.get("VAULT_KV_MOUNT", "secret"),
                "secret_path": env.get("VAULT_SECRET_PATH", "webos-link"),
                "ca_cert": env.get("VAULT_CACERT"),
            }

        return cls.from_mapping(data)


def load_config(path: Path) -> WebOSClientConfig:
    """Load a config from a YAML file."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise ConfigError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return WebOSClientConfig.from_mapping(data)


def build_token_storage(
    config: WebOSClientConfig, session: aiohttp.ClientSession | None = None
) -> TokenStorage:
    """Pick the token storage backend for a config.

    Vault requires an aiohttp session owned by the caller.
    """
    if config.vault is None:
        return FileTokenStorage(config.token_file)
    if session is None:
        raise ConfigError("Vault token storage requires an aiohttp session")
    vault = config.vault
    ssl_context = build_ssl_context(cafile=vault.ca_cert) if vault.ca_cert else None
    return VaultTokenStorage(
        session,
        vault.address,
        vault.token,
        kv_mount=vault.kv_mount,
        secret_path=vault.secret_path,
        ssl_context=ssl_context,
    )


def _parse_vault(data: Mapping[str, Any]) -> VaultConfig:
    address = data.get("address")
    token = data.get("token")
    if not isinstance(address, str) or not address.startswith(("http://", "https://")):
        raise ConfigError("vault.address must be an http(s) URL")
    if not isinstance(token, str) or not token:
        raise ConfigError("vault.token is required")
    return VaultConfig(
        address=address,
        token=token,
        kv_mount=str(data.get("kv_mount") or "secret"),
        secret_path=str(data.get("secret_path") or "webos-link"),
        ca_cert=data.get("ca_cert") or None,
    )


def _as_float(data: Mapping[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number, got bool")
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{key} must be a number, got {value!r}") from err


def _positive_float(data: Mapping[str, Any], key: str, default: float) -> float:
    value = _as_float(data, key, default)
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {value}")
    return value


def _non_negative_float(data: Mapping[str, Any], key: str, default: float) -> float:
    value = _as_float(data, key, default)
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {value}")
    return value


def _ping_interval(data: Mapping[str, Any]) -> int | None:
    """Keepalive interval in seconds; 0 or null disables pings."""
    value = data.get("ping_interval", DEFAULT_PING_INTERVAL)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError("ping_interval must be a number, got bool")
    try:
        interval = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"ping_interval must be a number, got {value!r}") from err
    if interval < 0:
        raise ConfigError(f"ping_interval must not be negative, got {interval}")
    return interval or None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)
