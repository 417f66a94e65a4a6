from __future__ import annotations

from auralink._redact import redact_settings, trim_payload


def test_redact_settings_masks_credentials() -> None:
    settings = {
        "host": "broker.example",
        "port": 8884,
        "username": "dash",
        "password": "pw",
    }

    redacted = redact_settings(settings)

    assert redacted == {
        "host": "broker.example",
        "port": 8884,
        "username": "<redacted>",
        "password": "<redacted>",
    }
    assert settings["password"] == "pw"


def test_redact_settings_keeps_unset_credentials_visible() -> None:
    assert redact_settings({"username": None, "password": None}) == {"username": None, "password": None}


def test_trim_payload_truncates_long_messages() -> None:
    trimmed = trim_payload("x" * 600, limit=10)

    assert trimmed == "x" * 10 + "…<600 chars>"


def test_trim_payload_leaves_short_messages() -> None:
    assert trim_payload("21.5") == "21.5"
