"""Configuration loader for the relay service.

Reads ``config.json`` (or a YAML file), applies ``OVERRIDE_<FIELD>`` environment
variables on top of the file contents and validates the result into an immutable
:class:`RelayCfg` that the rest of the service reads at runtime.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

OVERRIDE_PREFIX = "OVERRIDE_"
CONFIG_PATH_ENV = "COPILOT_RELAY_CONFIG_PATH"


class BackendCfg(BaseModel):
    """Connection details for one upstream API."""

    model_config = ConfigDict(frozen=True)

    api_base: str
    api_key: str = ""
    organization: str = ""
    project: str = ""

    @property
    def completions_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/chat/completions"


class RelayCfg(BaseModel):
    """Process-wide settings, read once at startup."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    bind: str = ":8181"
    proxy_url: str = ""
    timeout: float = 600.0
    http2: bool = True

    codex_api_base: str = ""
    codex_api_key: str = ""
    codex_api_organization: str = ""
    codex_api_project: str = ""

    chat_api_base: str = ""
    chat_api_key: str = ""
    chat_api_organization: str = ""
    chat_api_project: str = ""
    chat_model_default: str = ""
    chat_model_map: Dict[str, str] = Field(default_factory=dict)
    chat_max_tokens: int = Field(default=4096, ge=0)
    chat_locale: str = ""

    log_level: str = "INFO"

    @field_validator("bind")
    @classmethod
    def _valid_bind(cls, v: str) -> str:
        _split_bind(v)
        return v

    @field_validator("timeout")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("timeout must not be negative")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @property
    def chat_backend(self) -> BackendCfg:
        return BackendCfg(
            api_base=self.chat_api_base,
            api_key=self.chat_api_key,
            organization=self.chat_api_organization,
            project=self.chat_api_project,
        )

    @property
    def codex_backend(self) -> BackendCfg:
        return BackendCfg(
            api_base=self.codex_api_base,
            api_key=self.codex_api_key,
            organization=self.codex_api_organization,
            project=self.codex_api_project,
        )

    def listen_address(self) -> Tuple[str, int]:
        """Return ``(host, port)`` for the ``bind`` setting."""
        return _split_bind(self.bind)


def _split_bind(bind: str) -> Tuple[str, int]:
    host, sep, port = bind.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"bind must look like 'host:port', got {bind!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def _parse_uint(value: str) -> int:
    parsed = int(value, 10)
    if parsed < 0 or value.lstrip().startswith("-"):
        raise ValueError(f"invalid unsigned integer {value!r}")
    return parsed


def _parse_str_map(value: str) -> Dict[str, str]:
    parsed = json.loads(value)
    if not isinstance(parsed, dict) or not all(isinstance(v, str) for v in parsed.values()):
        raise ValueError("expected a JSON object of strings")
    return parsed


_OVERRIDES: Tuple[Tuple[str, Callable[[str], Any]], ...] = (
    ("bind", str),
    ("proxy_url", str),
    ("timeout", float),
    ("http2", _parse_bool),
    ("codex_api_base", str),
    ("codex_api_key", str),
    ("codex_api_organization", str),
    ("codex_api_project", str),
    ("chat_api_base", str),
    ("chat_api_key", str),
    ("chat_api_organization", str),
    ("chat_api_project", str),
    ("chat_model_default", str),
    ("chat_model_map", _parse_str_map),
    ("chat_max_tokens", _parse_uint),
    ("chat_locale", str),
    ("log_level", str),
)


def apply_overrides(data: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """Return a copy of *data* with ``OVERRIDE_<FIELD>`` variables applied.

    Values that cannot be coerced to the field's type are ignored and the file
    value is kept.
    """

    env = os.environ if environ is None else environ
    merged = dict(data)
    for name, parse in _OVERRIDES:
        raw = env.get(OVERRIDE_PREFIX + name.upper())
        if raw is None:
            continue
        try:
            merged[name] = parse(raw)
        except ValueError:
            continue
    return merged


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
def default_config_path() -> Path:
    env = os.getenv(CONFIG_PATH_ENV)
    if env:
        return Path(env)
    return Path.cwd() / "config.json"


def parse_config(raw: Mapping[str, Any]) -> RelayCfg:
    """Validate an already-merged mapping into a :class:`RelayCfg`."""
    return RelayCfg.model_validate(raw)


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> RelayCfg:
    """Parse *path*, apply environment overrides and return the validated config."""

    path = Path(path) if path is not None else default_config_path()
    if not path.exists():
        raise FileNotFoundError(path)

    with path.open("rt", encoding="utf-8") as fp:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(fp) or {}
        else:
            try:
                data = json.load(fp)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a top-level mapping")

    try:
        return parse_config(apply_overrides(data, environ))
    except ValidationError as exc:
        raise ValueError(f"Invalid config in {path}: {exc}") from exc
