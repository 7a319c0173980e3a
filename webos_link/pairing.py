"""Pairing manifest loading.

The manifest lists the permissions requested from the TV. It is data, kept
in ``pairing.yaml`` next to this module, so it can be replaced without code
changes.
"""

from __future__ import annotations

import copy
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .protocol import CLIENT_KEY_FIELD

DEFAULT_MANIFEST_PATH = Path(__file__).with_name("pairing.yaml")


@lru_cache(maxsize=8)
def _load_manifest_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Pairing manifest not found: {path}")
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Pairing manifest must be a mapping: {path}")
    return data


def load_pairing_manifest(path: Path | None = None) -> dict[str, Any]:
    """Load a registration payload template.

    Returns a fresh copy on every call; callers may mutate it.
    """
    return copy.deepcopy(_load_manifest_file(path or DEFAULT_MANIFEST_PATH))


def build_register_payload(
    manifest: dict[str, Any], client_key: str | None
) -> dict[str, Any]:
    """Merge the stored client key into a registration payload.

    An absent key means first time pairing; the field is left out.
    """
    payload = copy.deepcopy(manifest)
    payload.pop(CLIENT_KEY_FIELD, None)
    if client_key:
        payload[CLIENT_KEY_FIELD] = client_key
    return payload
