"""Configuration loaded from a YAML file, env vars, and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, fields

import yaml

from observer.models import DEFAULT_MAX_ATTEMPTS, FailurePolicy
from observer.serializer import DEFAULT_MAX_DEPTH, RenderMode
from observer.transport import DEFAULT_ENDPOINT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    token: str | None = None
    endpoint: str = DEFAULT_ENDPOINT
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    failure_policy: FailurePolicy = FailurePolicy.SILENT
    render_mode: RenderMode = RenderMode.STRUCTURAL
    max_depth: int = DEFAULT_MAX_DEPTH
    workers: int = 1
    send_timeout: float | None = 10.0
    poll_interval: float = 0.5
    retry_base_delay: float = 0.5
    retry_max_delay: float = 30.0
    metrics_interval: int = 0
    input_file: str | None = None


def _parse_timeout(value) -> float | None:
    if value is None or str(value).strip().lower() in ("", "none", "off"):
        return None
    timeout = float(value)
    return timeout if timeout > 0 else None


def _parse_optional_str(value) -> str | None:
    return None if value is None else str(value)


_CONVERTERS = {
    "token": _parse_optional_str,
    "endpoint": str,
    "max_attempts": int,
    "failure_policy": FailurePolicy.parse,
    "render_mode": RenderMode.parse,
    "max_depth": int,
    "workers": int,
    "send_timeout": _parse_timeout,
    "poll_interval": float,
    "retry_base_delay": float,
    "retry_max_delay": float,
    "metrics_interval": int,
    "input_file": _parse_optional_str,
}

_ENV_VARS = {
    "token": "OBSERVER_TOKEN",
    "endpoint": "OBSERVER_ENDPOINT",
    "max_attempts": "OBSERVER_MAX_ATTEMPTS",
    "failure_policy": "OBSERVER_FAILURE_POLICY",
    "render_mode": "OBSERVER_RENDER_MODE",
    "max_depth": "OBSERVER_MAX_DEPTH",
    "workers": "OBSERVER_WORKERS",
    "send_timeout": "OBSERVER_SEND_TIMEOUT",
    "poll_interval": "OBSERVER_POLL_INTERVAL",
    "retry_base_delay": "OBSERVER_RETRY_BASE_DELAY",
    "retry_max_delay": "OBSERVER_RETRY_MAX_DELAY",
    "metrics_interval": "OBSERVER_METRICS_INTERVAL",
}


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Observer log shipping client")
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    parser.add_argument("--token", type=str, default=None)
    parser.add_argument("--endpoint", type=str, default=None)
    parser.add_argument("--max-attempts", type=int, default=None)
    parser.add_argument(
        "--failure-policy",
        choices=[p.value for p in FailurePolicy],
        default=None,
    )
    parser.add_argument(
        "--render-mode",
        choices=[m.value for m in RenderMode],
        default=None,
    )
    parser.add_argument("--max-depth", type=int, default=None)
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--send-timeout", type=str, default=None)
    parser.add_argument("--poll-interval", type=float, default=None)
    parser.add_argument("--retry-base-delay", type=float, default=None)
    parser.add_argument("--retry-max-delay", type=float, default=None)
    parser.add_argument("--metrics-interval", type=int, default=None)
    parser.add_argument("--file", dest="input_file", type=str, default=None)
    return parser


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML file <- env vars <- CLI args.

    The YAML path comes from ``--config`` or ``OBSERVER_CONFIG``. Pass argv
    for testability; when None, argparse reads sys.argv.
    """
    args = _build_parser().parse_args(argv)
    known = {f.name for f in fields(Config)}
    values: dict = {}

    config_path = args.config or os.environ.get("OBSERVER_CONFIG")
    for key, value in load_yaml_config(config_path).items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        values[key] = value

    for key, env_var in _ENV_VARS.items():
        if env_var in os.environ:
            values[key] = os.environ[env_var]

    for key in known:
        value = getattr(args, key, None)
        if value is not None:
            values[key] = value

    return Config(**{key: _CONVERTERS[key](value) for key, value in values.items()})
