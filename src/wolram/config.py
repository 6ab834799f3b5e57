"""Runtime configuration: defaults, then `wolram.toml`, then environment."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from wolram.orchestrator.backend.anthropic_client import API_URL
from wolram.orchestrator.models import DEFAULT_TIER, CapabilityTier

CONFIG_FILE_NAME = "wolram.toml"
CONFIG_PATH_ENV = "WOLRAM_CONFIG"


@dataclass(frozen=True, slots=True)
class Settings:
    """Application settings, built once and passed explicitly."""

    api_key: str | None = None
    api_url: str = API_URL
    default_model_tier: CapabilityTier = DEFAULT_TIER
    max_retries: int = 3
    base_delay_ms: int = 1_000
    max_delay_ms: int = 60_000
    honor_rate_limit_hint: bool = True
    request_timeout_seconds: float = 120.0
    connect_timeout_seconds: float = 10.0
    max_tokens: int = 4_096
    llm_routing: bool = True
    git_recording: bool = True
    audit_dir: Path | None = None
    config_path: Path | None = None

    @classmethod
    def load(cls, config_path: Path | None = None) -> Settings:
        """Merge defaults, the TOML file (if any) and environment overrides."""

        path = config_path or _default_config_path()
        values: dict[str, Any] = {}
        loaded_from: Path | None = None
        if path is not None and path.is_file():
            values.update(_read_config_file(path))
            loaded_from = path
        elif config_path is not None:
            raise ValueError(f"Config file not found: {config_path}")

        values.update(_env_values())
        settings = cls(**_coerce(values), config_path=loaded_from)
        settings.validate()
        return settings

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with non-None overrides applied."""

        applied = {key: value for key, value in overrides.items() if value is not None}
        if not applied:
            return self
        updated = replace(self, **applied)
        updated.validate()
        return updated

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def validate(self) -> None:
        """Raise configuration error if values are out of range."""

        if self.max_retries < 0:
            raise ValueError("WOLRAM_MAX_RETRIES must be >= 0.")
        if self.base_delay_ms < 0:
            raise ValueError("WOLRAM_BASE_DELAY_MS must be >= 0.")
        if self.max_delay_ms < 0:
            raise ValueError("WOLRAM_MAX_DELAY_MS must be >= 0.")
        if self.request_timeout_seconds <= 0:
            raise ValueError("WOLRAM_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0.")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0.")
        if not self.api_url.startswith(("http://", "https://")):
            raise ValueError(f"WOLRAM_API_URL must be an http(s) URL: {self.api_url!r}")


def _default_config_path() -> Path | None:
    raw = os.getenv(CONFIG_PATH_ENV, "").strip()
    if raw:
        return Path(raw)
    candidate = Path.cwd() / CONFIG_FILE_NAME
    return candidate if candidate.is_file() else None


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except tomllib.TOMLDecodeError as error:
        raise ValueError(f"Invalid TOML in {path}: {error}") from error

    known = {field.name for field in fields(Settings)} - {"config_path"}
    # Accept both a flat file and one with a [wolram] table.
    table = raw.get("wolram", raw)
    if not isinstance(table, dict):
        raise ValueError(f"Invalid [wolram] table in {path}")
    unknown = sorted(key for key in table if key not in known)
    if unknown:
        raise ValueError(f"Unknown keys in {path}: {', '.join(unknown)}")
    return {key: value for key, value in table.items() if key in known}


def _env_values() -> dict[str, Any]:
    values: dict[str, Any] = {}
    api_key = os.getenv("WOLRAM_API_KEY") or os.getenv("ANTHROPIC_API_KEY")
    if api_key:
        values["api_key"] = api_key
    for name, key in (
        ("WOLRAM_API_URL", "api_url"),
        ("WOLRAM_DEFAULT_MODEL_TIER", "default_model_tier"),
        ("WOLRAM_MAX_RETRIES", "max_retries"),
        ("WOLRAM_BASE_DELAY_MS", "base_delay_ms"),
        ("WOLRAM_MAX_DELAY_MS", "max_delay_ms"),
        ("WOLRAM_REQUEST_TIMEOUT_SECONDS", "request_timeout_seconds"),
        ("WOLRAM_AUDIT_DIR", "audit_dir"),
    ):
        raw = os.getenv(name, "").strip()
        if raw:
            values[key] = _EnvValue(name, raw)
    for name, key in (
        ("WOLRAM_HONOR_RATE_LIMIT_HINT", "honor_rate_limit_hint"),
        ("WOLRAM_LLM_ROUTING", "llm_routing"),
        ("WOLRAM_GIT_RECORDING", "git_recording"),
    ):
        if os.getenv(name) is not None:
            values[key] = _env_bool(name, default=True)
    return values


@dataclass(frozen=True, slots=True)
class _EnvValue:
    name: str
    raw: str


def _coerce(values: dict[str, Any]) -> dict[str, Any]:  # noqa: C901
    coerced: dict[str, Any] = {}
    for key, value in values.items():
        source = value.name if isinstance(value, _EnvValue) else key
        raw = value.raw if isinstance(value, _EnvValue) else value
        try:
            if key in {"max_retries", "base_delay_ms", "max_delay_ms", "max_tokens"}:
                if isinstance(raw, bool):
                    raise ValueError(raw)
                coerced[key] = int(raw)
            elif key in {"request_timeout_seconds", "connect_timeout_seconds"}:
                coerced[key] = float(raw)
            elif key == "default_model_tier":
                coerced[key] = CapabilityTier.parse(str(raw))
            elif key == "audit_dir":
                coerced[key] = Path(str(raw)).expanduser()
            elif key in {"honor_rate_limit_hint", "llm_routing", "git_recording"}:
                if not isinstance(raw, bool):
                    raise ValueError(raw)
                coerced[key] = raw
            else:
                coerced[key] = str(raw)
        except ValueError as error:
            raise ValueError(f"Invalid value for {source}: {raw!r}") from error
    return coerced


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
