"""Runtime settings, read from ODYSSEY_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ValidationError
from .pairing import DEFAULT_PAIRING_TIMEOUT_MS, DEFAULT_POLL_INTERVAL_MS
from .remote import DEFAULT_API_URL

DEFAULT_HOME = Path.home() / ".odyssey"
DEFAULT_HTTP_TIMEOUT = 30.0

ODYSSEY_HOME_ENV = "ODYSSEY_HOME"
ODYSSEY_API_URL_ENV = "ODYSSEY_API_URL"
ODYSSEY_HTTP_TIMEOUT_ENV = "ODYSSEY_HTTP_TIMEOUT"
ODYSSEY_POLL_INTERVAL_MS_ENV = "ODYSSEY_POLL_INTERVAL_MS"
ODYSSEY_PAIRING_TIMEOUT_MS_ENV = "ODYSSEY_PAIRING_TIMEOUT_MS"


def _positive(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass
class Settings:
    home: Path = DEFAULT_HOME
    api_url: str = DEFAULT_API_URL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    pairing_timeout_ms: int = DEFAULT_PAIRING_TIMEOUT_MS

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if env is None else env
        home = env.get(ODYSSEY_HOME_ENV)
        return cls(
            home=Path(home).expanduser() if home else DEFAULT_HOME,
            api_url=env.get(ODYSSEY_API_URL_ENV) or DEFAULT_API_URL,
            http_timeout=_positive(env, ODYSSEY_HTTP_TIMEOUT_ENV, DEFAULT_HTTP_TIMEOUT, float),
            poll_interval_ms=_positive(env, ODYSSEY_POLL_INTERVAL_MS_ENV, DEFAULT_POLL_INTERVAL_MS, int),
            pairing_timeout_ms=_positive(env, ODYSSEY_PAIRING_TIMEOUT_MS_ENV, DEFAULT_PAIRING_TIMEOUT_MS, int),
        )

    @property
    def store_dir(self) -> Path:
        return self.home / "store"

    @property
    def audit_path(self) -> Path:
        return self.home / "audit.jsonl"

    @property
    def audit_key_path(self) -> Path:
        return self.home / "secrets" / "audit_hmac.key"

    @property
    def keys_dir(self) -> Path:
        return self.home / "keys"
