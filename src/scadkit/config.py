"""Runtime settings for scadkit.

Settings are layered: built-in defaults, then an optional YAML file named
by ``SCADKIT_CONFIG``, then individual ``SCADKIT_*`` environment
variables. Keys in the YAML file use the field names of
:class:`Settings`::

    kernel: manifold
    default_timeout_ms: 30000
    use_worker: false
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV = 'SCADKIT_CONFIG'

# environment variable -> Settings field
ENV_FIELDS = {
    'SCADKIT_KERNEL': 'kernel',
    'SCADKIT_TIMEOUT_MS': 'default_timeout_ms',
    'SCADKIT_MAX_CALL_DEPTH': 'max_call_depth',
    'SCADKIT_MAX_ERRORS': 'max_errors',
    'SCADKIT_USE_WORKER': 'use_worker',
    'SCADKIT_LOG_LEVEL': 'log_level',
}

_TRUE = ('1', 'true', 'yes', 'on')
_FALSE = ('0', 'false', 'no', 'off')


@dataclass(frozen=True)
class Settings:
    kernel: str = 'manifold'
    default_timeout_ms: int = 60000
    min_timeout_ms: int = 1
    max_timeout_ms: int = 300000
    max_call_depth: int = 100
    max_errors: int = 20
    use_worker: bool = True
    allow_fallback: bool = True
    log_level: str = 'WARNING'

    def clamp_timeout(self, timeout_ms: Optional[float]) -> int:
        """Clamp a requested timeout into [min_timeout_ms, max_timeout_ms]."""
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        return int(max(self.min_timeout_ms, min(self.max_timeout_ms, timeout_ms)))


def _coerce(name: str, raw: Any) -> Any:
    """Convert a raw YAML/env value to the type of field `name`."""
    default = getattr(Settings, name)
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"{name}: expected a boolean, got {raw!r}")
    if isinstance(default, int):
        return int(float(raw))
    return str(raw)


def _from_file(path: Path) -> Dict[str, Any]:
    with path.open('r', encoding='utf-8') as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of settings")
    known = {f.name for f in fields(Settings)}
    values = {}
    for key, raw in data.items():
        if key not in known:
            logger.warning("ignoring unknown setting '%s' in %s", key, path)
            continue
        values[key] = _coerce(key, raw)
    return values


def load_settings(environ: Optional[Dict[str, str]] = None) -> Settings:
    """Build Settings from defaults, the YAML file and the environment."""
    env = os.environ if environ is None else environ
    settings = Settings()

    config_path = env.get(CONFIG_ENV)
    if config_path:
        settings = replace(settings, **_from_file(Path(config_path)))

    overrides = {}
    for var, name in ENV_FIELDS.items():
        raw = env.get(var)
        if raw is not None and raw != '':
            overrides[name] = _coerce(name, raw)
    if overrides:
        settings = replace(settings, **overrides)

    if settings.min_timeout_ms > settings.max_timeout_ms:
        raise ValueError("min_timeout_ms must not exceed max_timeout_ms")
    return settings


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Settings for this process, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None


def configure_logging(level: Optional[str] = None) -> None:
    """Apply a log level (or the configured one) to the scadkit logger."""
    name = (level or get_settings().log_level).upper()
    logging.getLogger('scadkit').setLevel(getattr(logging, name, logging.WARNING))
