"""Pairing token storage backends."""

from __future__ import annotations

import asyncio
import json
import os
import ssl
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final, Protocol

import aiohttp

from .errors import ConfigError, StorageError

_VAULT_TIMEOUT: Final = aiohttp.ClientTimeout(total=10)

_XDG_DIRS: Final[dict[str, tuple[str, str]]] = {
    "config": ("XDG_CONFIG_HOME", ".config"),
    "data": ("XDG_DATA_HOME", ".local/share"),
    "state": ("XDG_STATE_HOME", ".local/state"),
}


class TokenStorage(Protocol):
    """Read and persist the pairing token (the device's ``client-key``)."""

    async def read_token(self) -> str | None:
        """Return the stored token, or None when nothing is stored."""

    async def save_token(self, token: str) -> None:
        """Persist a freshly granted token."""


def xdg_path(kind: str, *parts: str, environ: Mapping[str, str] | None = None) -> Path:
    """Resolve a path under an XDG base directory.

    ``kind`` is one of ``config``, ``data`` or ``state``. The matching
    ``XDG_*_HOME`` variable is used when it holds an absolute path, otherwise
    the default below ``$HOME``.

    Raises:
        ConfigError: If neither the XDG variable nor HOME is usable.
    """
    if kind not in _XDG_DIRS:
        raise ConfigError(f"Unknown XDG path kind: {kind}")
    env = os.environ if environ is None else environ
    env_var, default_in_home = _XDG_DIRS[kind]

    candidate = env.get(env_var)
    if _is_valid_base(candidate):
        return Path(candidate, *parts)  # type: ignore[arg-type]

    home = env.get("HOME")
    if _is_valid_base(home):
        return Path(home, default_in_home, *parts)  # type: ignore[arg-type]

    raise ConfigError("Unable to find XDG path")


def _is_valid_base(value: str | None) -> bool:
    return value is not None and value.strip() != "" and os.path.isabs(value)


class FileTokenStorage:
    """Token storage in a small JSON file.

    Defaults to ``$XDG_STATE_HOME/webos-link/client-key.json``.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or xdg_path("state", "webos-link", "client-key.json")

    async def read_token(self) -> str | None:
        return await asyncio.to_thread(self._read)

    async def save_token(self, token: str) -> None:
        await asyncio.to_thread(self._write, token)

    def _read(self) -> str | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as err:
            raise StorageError(f"Failed to read {self.path}: {err}") from err

        try:
            data = json.loads(raw)
        except ValueError as err:
            raise StorageError(f"Token file {self.path} is not valid JSON") from err

        token = data.get("token") if isinstance(data, dict) else None
        return token if isinstance(token, str) and token else None

    def _write(self, token: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps({"token": token}), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as err:
            raise StorageError(f"Failed to write {self.path}: {err}") from err


class VaultTokenStorage:
    """Token storage in a HashiCorp Vault KV v2 secret."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        vault_address: str,
        vault_token: str,
        *,
        kv_mount: str = "secret",
        secret_path: str = "webos-link",
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._session = session
        self._vault_token = vault_token
        self._ssl = ssl_context
        self.secret_url = (
            f"{vault_address.rstrip('/')}/v1/{kv_mount.strip('/')}"
            f"/data/{secret_path.strip('/')}"
        )

    def _headers(self) -> dict[str, str]:
        return {"X-Vault-Token": self._vault_token}

    def _request_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "headers": self._headers(),
            "timeout": _VAULT_TIMEOUT,
        }
        if self._ssl is not None:
            kwargs["ssl"] = self._ssl
        return kwargs

    async def read_token(self) -> str | None:
        """Read the token; a missing secret (404) means never paired."""
        try:
            async with self._session.get(
                self.secret_url, **self._request_kwargs()
            ) as resp:
                if resp.status == 404:
                    return None
                if resp.status != 200:
                    raise StorageError(
                        f"Failed to read from Vault: {await resp.text()}",
                        status=resp.status,
                    )
                body = await resp.json()
        except TimeoutError as err:
            raise StorageError("Vault read timed out") from err
        except ValueError as err:
            raise StorageError(f"Vault returned invalid JSON: {err}") from err
        except aiohttp.ClientError as err:
            raise StorageError(f"Vault read failed: {err}") from err

        return _extract_token(body)

    async def save_token(self, token: str) -> None:
        """Write the token as ``{"data": {"token": ...}}``."""
        try:
            async with self._session.post(
                self.secret_url,
                json={"data": {"token": token}},
                **self._request_kwargs(),
            ) as resp:
                if resp.status not in (200, 204):
                    raise StorageError(
                        f"Failed to write to Vault: {await resp.text()}",
                        status=resp.status,
                    )
        except TimeoutError as err:
            raise StorageError("Vault write timed out") from err
        except aiohttp.ClientError as err:
            raise StorageError(f"Vault write failed: {err}") from err


def _extract_token(body: Any) -> str | None:
    """Pull the token out of a KV v2 read response.

    KV v2 nests the secret under ``data.data``; a top level ``token`` is
    accepted for flat layouts.
    """
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if isinstance(data, dict):
        inner = data.get("data")
        if isinstance(inner, dict) and isinstance(inner.get("token"), str):
            return inner["token"]
    token = body.get("token")
    return token if isinstance(token, str) else None
