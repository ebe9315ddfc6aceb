from __future__ import annotations

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from eliot_admin.config import Settings
from eliot_admin.infrastructure.decoder_api import resolve_credentials, resolve_refine_credentials


def test_defaults_when_environment_is_empty():
    settings = Settings.from_env({})

    assert settings.port == 3001
    assert settings.func_base == ""
    assert settings.poll_timeout == 300.0
    assert settings.poll_interval == 2.0
    assert "http://localhost:5173" in settings.cors_origins
    assert settings.decoder_overrides == {}


def test_plain_names_win_over_vite_prefixed_names():
    settings = Settings.from_env(
        {
            "FUNC_BASE": "https://func.example",
            "VITE_FUNC_BASE": "https://legacy.example",
            "VITE_FUNC_KEY": "legacy-key",
        }
    )

    assert settings.func_base == "https://func.example"
    assert settings.func_key == "legacy-key"


def test_port_and_cors_origins():
    settings = Settings.from_env({"PORT": "8080", "API_CORS_ORIGINS": "https://a.example, https://b.example"})

    assert settings.port == 8080
    assert settings.cors_origins == ("https://a.example", "https://b.example")


def test_invalid_numbers_fall_back_to_defaults():
    settings = Settings.from_env({"PORT": "abc", "POLL_TIMEOUT_SECONDS": "soon"})

    assert settings.port == 3001
    assert settings.poll_timeout == 300.0


def test_per_manufacturer_credentials_override_unified_ones():
    settings = Settings.from_env(
        {
            "DECODER_BASE": "https://decoders.example",
            "DECODER_KEY": "shared",
            "DECODER_BASE_DRAGINO": "https://dragino.example",
            "DECODER_KEY_DRAGINO": "dragino-key",
            "DECODER_BASE_WATTECO": "https://watteco.example",
        }
    )

    dragino = resolve_credentials("dragino", settings)
    watteco = resolve_credentials("watteco", settings)

    assert (dragino.base, dragino.key) == ("https://dragino.example", "dragino-key")
    # an override without a key is ignored
    assert (watteco.base, watteco.key) == ("https://decoders.example", "shared")


def test_refine_credentials_are_separate():
    settings = Settings.from_env({"REFINE_BASE": "https://refine.example", "REFINE_KEY": "r"})

    credentials = resolve_refine_credentials(settings)

    assert credentials.configured
    assert credentials.base == "https://refine.example"
    assert not resolve_credentials("milesight", settings).configured
