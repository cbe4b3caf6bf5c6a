from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

SERVER_NAME = "read-images"
SERVER_VERSION = "0.1.0"

DEFAULT_MODEL = "gpt-4.1"
DEFAULT_BASE_URL = "https://api.openai.com/v1"

CONFIG_PATH = Path.home() / ".config" / "read-images" / "config.yml"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass(frozen=True)
class ResizeProfile:
    max_dimension: int
    quality: int


PROFILES: dict[str, ResizeProfile] = {
    "compact": ResizeProfile(max_dimension=400, quality=60),
    "high-fidelity": ResizeProfile(max_dimension=1024, quality=85),
}
DEFAULT_PROFILE = "high-fidelity"


@dataclass(frozen=True)
class ServerConfig:
    # Secret; read once at startup, checked only when tools/call needs it.
    api_key: str = field(default="", repr=False)
    default_model: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 60.0
    max_tokens: int = 1000
    image_detail: str = "high"
    profile: ResizeProfile = PROFILES[DEFAULT_PROFILE]
    log_level: str = "INFO"

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())


# Environment variable -> config key.  Env values always win over the file.
_ENV_KEYS = {
    "OPENAI_API_KEY": "api_key",
    "OPENAI_MODEL": "default_model",
    "OPENAI_BASE_URL": "base_url",
    "READ_IMAGES_TIMEOUT": "timeout",
    "READ_IMAGES_MAX_TOKENS": "max_tokens",
    "READ_IMAGES_IMAGE_DETAIL": "image_detail",
    "READ_IMAGES_PROFILE": "profile",
    "READ_IMAGES_MAX_DIMENSION": "max_dimension",
    "READ_IMAGES_JPEG_QUALITY": "jpeg_quality",
    "READ_IMAGES_LOG_LEVEL": "log_level",
}

# api_key is intentionally absent: credentials only come from the environment.
_FILE_KEYS = set(_ENV_KEYS.values()) - {"api_key"}


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _validate(raw: Mapping[str, Any]) -> ServerConfig:
    defaults = ServerConfig()

    api_key = raw.get("api_key")
    api_key = api_key.strip() if isinstance(api_key, str) else defaults.api_key

    model = raw.get("default_model")
    model = model.strip() if isinstance(model, str) else defaults.default_model

    base_url = raw.get("base_url")
    if not isinstance(base_url, str) or not base_url.strip():
        base_url = defaults.base_url
    base_url = base_url.strip().rstrip("/")

    timeout = _as_float(raw.get("timeout"))
    if timeout is None or timeout <= 0:
        timeout = defaults.timeout

    max_tokens = _as_int(raw.get("max_tokens"))
    if max_tokens is None or max_tokens <= 0:
        max_tokens = defaults.max_tokens

    detail = raw.get("image_detail")
    if detail not in {"low", "high", "auto"}:
        detail = defaults.image_detail

    profile_name = str(raw.get("profile") or DEFAULT_PROFILE).strip().lower()
    profile = PROFILES.get(profile_name, defaults.profile)
    # An explicit pair overrides the named preset, one field at a time.
    max_dim = _as_int(raw.get("max_dimension"))
    if max_dim is not None and max_dim > 0:
        profile = replace(profile, max_dimension=max_dim)
    quality = _as_int(raw.get("jpeg_quality"))
    if quality is not None and 1 <= quality <= 95:
        profile = replace(profile, quality=quality)

    level = str(raw.get("log_level") or defaults.log_level).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        level = defaults.log_level

    return ServerConfig(
        api_key=api_key,
        default_model=model,
        base_url=base_url,
        timeout=timeout,
        max_tokens=max_tokens,
        image_detail=detail,
        profile=profile,
        log_level=level,
    )


def _read_file(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        return {}
    return {k: v for k, v in raw.items() if k in _FILE_KEYS}


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    """Build the process configuration: defaults, then the YAML file, then the environment."""
    env = os.environ if environ is None else environ
    if path is None:
        path = Path(env["READ_IMAGES_CONFIG"]) if env.get("READ_IMAGES_CONFIG") else CONFIG_PATH
    merged: dict[str, Any] = _read_file(path)
    for var, key in _ENV_KEYS.items():
        value = env.get(var)
        if value is not None and value.strip():
            merged[key] = value
    return _validate(merged)


def configure_logging(level: str = "INFO") -> None:
    # stdout carries protocol traffic; diagnostics go to stderr only.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
