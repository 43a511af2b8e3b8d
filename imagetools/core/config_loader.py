"""Server settings loading and normalization.

Precedence: built-in defaults < optional YAML file < environment variables.

Environment variables:
  PORT, HOST
  REDIS_URL                   (broker connection URL)
  OPENAI_API_KEY, OPENAI_API_BASE
  IMAGETOOLS_SSE_PATH, IMAGETOOLS_MESSAGES_PATH
  IMAGETOOLS_PING_INTERVAL    (seconds between keepalive comments, 0 disables)
  IMAGETOOLS_IMAGE_MODEL, IMAGETOOLS_IMAGE_SIZE, IMAGETOOLS_MAX_IMAGE_BYTES
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import os
import yaml
from .errors import ConfigError

DEFAULT_REDIS_URL = "redis://redis:6379"
DEFAULT_API_BASE = "https://api.openai.com/v1/images/generations"
VALID_REDIS_SCHEMES = {"redis", "rediss", "unix"}

ENV_MAP = {
    "HOST": "host",
    "PORT": "port",
    "REDIS_URL": "redis_url",
    "OPENAI_API_KEY": "openai_api_key",
    "OPENAI_API_BASE": "openai_api_base",
    "IMAGETOOLS_SSE_PATH": "sse_path",
    "IMAGETOOLS_MESSAGES_PATH": "messages_path",
    "IMAGETOOLS_PING_INTERVAL": "ping_interval",
    "IMAGETOOLS_IMAGE_MODEL": "image_model",
    "IMAGETOOLS_IMAGE_SIZE": "image_size",
    "IMAGETOOLS_MAX_IMAGE_BYTES": "max_image_bytes",
}


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    redis_url: str = DEFAULT_REDIS_URL
    sse_path: str = "/sse"
    messages_path: str = "/messages"
    ping_interval: float = 15.0
    openai_api_key: Optional[str] = None
    openai_api_base: str = DEFAULT_API_BASE
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    max_image_bytes: int = 5 * 1024


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _normalize_path(value: str) -> str:
    if not value.startswith("/"):
        value = "/" + value
    if value != "/" and value.endswith("/"):
        value = value[:-1]
    return value


def _coerce(raw: Dict[str, Any]) -> Settings:
    known = {f.name: f for f in fields(Settings)}
    unknown = set(raw) - set(known)
    if unknown:
        raise ConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
    values: Dict[str, Any] = {}
    for name, val in raw.items():
        if val is None:
            continue
        try:
            if name in ("port", "max_image_bytes"):
                values[name] = int(val)
            elif name == "ping_interval":
                values[name] = float(val)
            else:
                values[name] = str(val)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {name}: {val!r}") from e
    return Settings(**values)


def _validate(s: Settings):
    if not 0 < s.port < 65536:
        raise ConfigError(f"Invalid port: {s.port}")
    scheme = s.redis_url.split("://", 1)[0] if "://" in s.redis_url else ""
    if scheme not in VALID_REDIS_SCHEMES:
        raise ConfigError(f"redis_url must use one of {sorted(VALID_REDIS_SCHEMES)}: {s.redis_url}")
    if s.ping_interval < 0:
        raise ConfigError("ping_interval must be >= 0")
    if s.max_image_bytes <= 0:
        raise ConfigError("max_image_bytes must be > 0")
    if s.sse_path == s.messages_path:
        raise ConfigError("sse_path and messages_path must differ")


def load_settings(config_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    raw: Dict[str, Any] = {}
    if config_path:
        p = Path(config_path)
        if not p.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        raw.update(_read_yaml(p))
    for var, name in ENV_MAP.items():
        if env.get(var):
            raw[name] = env[var]
    settings = _coerce(raw)
    settings.sse_path = _normalize_path(settings.sse_path)
    settings.messages_path = _normalize_path(settings.messages_path)
    _validate(settings)
    return settings


__all__ = ["Settings", "load_settings", "ConfigError"]
