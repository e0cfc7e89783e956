from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from rpcobs.config import ObservabilityConfig, parse_config_text
from rpcobs.errors import ConfigIOError, ObservabilityConfigError, SourceUnavailableError
from rpcobs.observability import metrics


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR_NAME = "GRPC_CONFIG_OBSERVABILITY"
CONFIG_FILE_ENV_VAR_NAME = "GRPC_CONFIG_OBSERVABILITY_JSON"

_lock = threading.Lock()
_cached: Optional[ObservabilityConfig] = None


@dataclass(frozen=True)
class ConfigSource:
    origin: str  # "file" | "env" | "unset"
    location: str
    text: Optional[str]


def read_config_file(path: Path) -> str:
    try:
        with path.open("r", encoding="utf-8") as f:
            return f.read()
    except UnicodeDecodeError as e:
        raise ConfigIOError(f"config file is not valid UTF-8: {path}: {e}", path=str(path)) from e
    except OSError as e:
        raise ConfigIOError(f"failed to read config file: {path}: {e}", path=str(path)) from e


def resolve_config_text(environ: Optional[Mapping[str, str]] = None) -> ConfigSource:
    """Pick the config text; the file path variable wins over inline JSON."""
    env = os.environ if environ is None else environ

    config_file = env.get(CONFIG_FILE_ENV_VAR_NAME)
    if config_file:
        path = Path(config_file)
        return ConfigSource(origin="file", location=str(path), text=read_config_file(path))

    inline = env.get(CONFIG_ENV_VAR_NAME)
    if inline is None:
        return ConfigSource(origin="unset", location=CONFIG_ENV_VAR_NAME, text=None)
    return ConfigSource(origin="env", location=CONFIG_ENV_VAR_NAME, text=inline)


def _load(source: ConfigSource) -> ObservabilityConfig:
    if source.text is None:
        metrics.observe_config_load(origin=source.origin, status=SourceUnavailableError.__name__)
        raise SourceUnavailableError(
            f"neither {CONFIG_FILE_ENV_VAR_NAME} nor {CONFIG_ENV_VAR_NAME} is set"
        )
    try:
        config = parse_config_text(source.text)
    except ObservabilityConfigError as e:
        metrics.observe_config_load(origin=source.origin, status=type(e).__name__)
        logger.warning("observability config from %s %s rejected: %s", source.origin, source.location, e)
        raise

    metrics.observe_config_load(origin=source.origin, status="ok")
    metrics.publish_config(config)
    logger.info(
        "loaded observability config from %s %s (logging=%s monitoring=%s trace=%s sampling=%s)",
        source.origin,
        source.location,
        config.enable_cloud_logging,
        config.enable_cloud_monitoring,
        config.enable_cloud_trace,
        config.sampling.kind.value,
    )
    return config


def load_config_from_file(path: Path) -> ObservabilityConfig:
    try:
        text = read_config_file(path)
    except ConfigIOError:
        metrics.observe_config_load(origin="file", status=ConfigIOError.__name__)
        raise
    return _load(ConfigSource(origin="file", location=str(path), text=text))


def load_config_from_environment(environ: Optional[Mapping[str, str]] = None) -> ObservabilityConfig:
    try:
        source = resolve_config_text(environ)
    except ConfigIOError:
        metrics.observe_config_load(origin="file", status=ConfigIOError.__name__)
        raise
    return _load(source)


def get_config(environ: Optional[Mapping[str, str]] = None) -> ObservabilityConfig:
    """Return the process-wide config, loading it on first use."""
    global _cached
    with _lock:
        if _cached is None:
            _cached = load_config_from_environment(environ)
        return _cached


def reset_config_for_tests() -> None:
    global _cached
    with _lock:
        _cached = None
