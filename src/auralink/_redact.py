"""Helpers for safe debug logging.

Two things reach the DEBUG log: broker connection settings, which carry
credentials, and message payloads, which are free text of any length.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

_CREDENTIAL_KEYS: frozenset[str] = frozenset({"username", "password", "owner_token"})


def redact_settings(settings: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *settings* with credential values masked.

    Unset credentials stay ``None`` so the log still shows whether
    authentication was configured.
    """
    return {
        key: "<redacted>" if key.lower() in _CREDENTIAL_KEYS and value is not None else value
        for key, value in settings.items()
    }


def trim_payload(payload: str, *, limit: int = 64) -> str:
    if len(payload) > limit:
        return f"{payload[:limit]}…<{len(payload)} chars>"
    return payload
