"""
Engine settings (``approval_config.settings``).

Responsibility
--------------
One frozen ``EngineSettings`` value assembled from an optional YAML file
and ``APPROVAL_*`` environment overrides.  Services receive settings by
injection; nothing else reads the environment.

Precedence
----------
defaults < YAML file < environment.

Failure modes
-------------
* Unknown keys, bad enum values, non-positive intervals -> ``ConfigurationError``.
* Missing YAML file -> ``FileNotFoundError`` propagates.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from approval_kernel.domain.workflow import ParallelApprovalPolicy
from approval_kernel.exceptions import ConfigurationError

DEFAULT_PRIORITY_ALIASES: dict[str, int] = {
    "low": 10,
    "medium": 50,
    "high": 100,
    "critical": 200,
}

ENV_PREFIX = "APPROVAL_"

_ENV_KEYS: dict[str, str] = {
    "APPROVAL_DATABASE_URL": "database_url",
    "APPROVAL_DEFAULT_ESCALATION_ROLE": "default_escalation_role",
    "APPROVAL_PARALLEL_POLICY": "parallel_policy",
    "APPROVAL_ESCALATION_INTERVAL": "escalation_interval_seconds",
    "APPROVAL_LOG_LEVEL": "log_level",
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the approval engine.

    ``parallel_policy`` decides when parallel steps at one order advance;
    ``all_required`` is the documented contract.
    """

    database_url: str = "sqlite://"
    default_escalation_role: str = "admin"
    parallel_policy: ParallelApprovalPolicy = ParallelApprovalPolicy.ALL_REQUIRED
    escalation_interval_seconds: float = 300.0
    escalation_batch_size: int = 100
    log_level: str = "INFO"
    priority_aliases: Mapping[str, int] = field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_ALIASES),
    )

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)


def _coerce(name: str, value: Any) -> Any:
    if name == "parallel_policy":
        try:
            return ParallelApprovalPolicy(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                name, value,
                "expected one of "
                + ", ".join(p.value for p in ParallelApprovalPolicy),
            ) from None
    if name == "escalation_interval_seconds":
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(name, value, "not a number") from None
        if seconds <= 0:
            raise ConfigurationError(name, value, "must be positive")
        return seconds
    if name == "escalation_batch_size":
        try:
            size = int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(name, value, "not an integer") from None
        if size <= 0:
            raise ConfigurationError(name, value, "must be positive")
        return size
    if name == "log_level":
        level = str(value).strip().upper()
        if level not in _LOG_LEVELS:
            raise ConfigurationError(name, value, f"expected one of {', '.join(_LOG_LEVELS)}")
        return level
    if name == "priority_aliases":
        if not isinstance(value, Mapping):
            raise ConfigurationError(name, value, "expected a mapping of name -> int")
        aliases = dict(DEFAULT_PRIORITY_ALIASES)
        for alias, number in value.items():
            if isinstance(number, bool) or not isinstance(number, int):
                raise ConfigurationError(f"{name}.{alias}", number, "not an integer")
            aliases[str(alias).lower()] = number
        return aliases
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigurationError(name, value, "must not be empty")
    return text


def load_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Build ``EngineSettings`` from defaults, an optional YAML file, and env.

    The YAML file is a flat mapping of field names, optionally nested under
    an ``engine:`` key.
    """
    env = os.environ if env is None else env
    known = {f.name for f in fields(EngineSettings)}
    values: dict[str, Any] = {}

    if path is not None:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, Mapping):
            raise ConfigurationError("settings_file", str(path), "expected a mapping")
        if "engine" in raw and isinstance(raw["engine"], Mapping):
            raw = raw["engine"]
        for key, value in raw.items():
            if key not in known:
                raise ConfigurationError(str(key), value, "unknown setting")
            values[key] = _coerce(key, value)

    for env_key, name in _ENV_KEYS.items():
        if env_key in env:
            values[name] = _coerce(name, env[env_key])

    return replace(EngineSettings(), **values)
