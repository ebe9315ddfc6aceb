"""Process configuration for the admin console.

Values come from the environment (optionally seeded from a ``.env`` file).
Every remote-service variable is accepted both under its plain name and under
the ``VITE_`` prefixed name used by the earlier browser build, so existing
deployment files keep working.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CORS_ORIGINS: tuple[str, ...] = ("http://localhost:5173", "http://127.0.0.1:5173")


def _env(name: str, environ: Mapping[str, str], default: str = "") -> str:
    value = environ.get(name)
    if value is None or not value.strip():
        value = environ.get(f"VITE_{name}")
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, environ: Mapping[str, str], default: float) -> float:
    raw = _env(name, environ)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration for every external collaborator."""

    func_base: str = ""
    func_key: str = ""
    decoder_base: str = ""
    decoder_key: str = ""
    refine_base: str = ""
    refine_key: str = ""
    device_model_finder_url: str = ""
    model_db_insertion_url: str = ""
    decoder_overrides: dict[str, tuple[str, str]] = field(default_factory=dict)
    port: int = 3001
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    poll_timeout: float = 300.0
    poll_interval: float = 2.0
    http_timeout: float = 60.0
    log_level: str = "INFO"
    json_logs: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        overrides: dict[str, tuple[str, str]] = {}
        for key in env:
            if not key.startswith("DECODER_BASE_"):
                continue
            manufacturer = key[len("DECODER_BASE_"):].lower()
            base = _env(key, env)
            api_key = _env(f"DECODER_KEY_{manufacturer.upper()}", env)
            if base and api_key:
                overrides[manufacturer] = (base, api_key)

        origins_env = _env("API_CORS_ORIGINS", env)
        origins = tuple(origin.strip() for origin in origins_env.split(",") if origin.strip())

        port_raw = _env("PORT", env, "3001")
        try:
            port = int(port_raw)
        except ValueError:
            port = 3001

        return cls(
            func_base=_env("FUNC_BASE", env),
            func_key=_env("FUNC_KEY", env),
            decoder_base=_env("DECODER_BASE", env),
            decoder_key=_env("DECODER_KEY", env),
            refine_base=_env("REFINE_BASE", env),
            refine_key=_env("REFINE_KEY", env),
            device_model_finder_url=_env("DEVICE_MODEL_FINDER_URL", env),
            model_db_insertion_url=_env("MODEL_DB_INSERTION_URL", env),
            decoder_overrides=overrides,
            port=port,
            cors_origins=origins or DEFAULT_CORS_ORIGINS,
            poll_timeout=_env_float("POLL_TIMEOUT_SECONDS", env, 300.0),
            poll_interval=_env_float("POLL_INTERVAL_SECONDS", env, 2.0),
            http_timeout=_env_float("HTTP_TIMEOUT", env, 60.0),
            log_level=_env("LOG_LEVEL", env, "INFO").upper(),
            json_logs=_env("JSON_LOGS", env, "false").lower() == "true",
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read once from the environment."""

    return Settings.from_env()


__all__ = ["Settings", "get_settings"]
