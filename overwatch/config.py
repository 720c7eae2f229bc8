"""Configuration loading and validation."""

import copy
import re
import tomllib

from overwatch.commands import SHELL_GENERATORS, SQL_GENERATORS
from overwatch.errors import ConfigurationError, UnknownReactorKind
from overwatch.events import EVENT_TYPES
from overwatch.reactors import REACTOR_KINDS

# (section path, key, minimum) for every setting that must be an integer
INTEGER_SETTINGS = [
    (("logging",), "maxsize", 0),
    (("logging",), "maxfiles", 0),
    (("monitor",), "stability_threshold", 0),
    (("monitor",), "poll_interval", 1),
    (("reactor", "shell"), "pool_size", 1),
    (("reactor", "shell"), "idle_timeout_ms", 1),
    (("reactor", "shell"), "max_history", 0),
    (("reactor", "db"), "port", 1),
    (("runner",), "workers", 1),
    (("runner",), "health_port", 0),
]

DEFAULT_CONFIG = {
    "logging": {
        "file": None,
        "level": "debug",
        "maxsize": 10485760,
        "maxfiles": 20,
    },
    "monitor": {
        "dir": None,
        "stability_threshold": 30000,
        "poll_interval": 1000,
        "recursive": True,
    },
    "evaluator": {
        "events": [],
        "regex": None,
        "reactors": [],
    },
    "reactor": {
        "shell": {
            "uid": None,
            "gid": None,
            "cwd": "./",
            "command": "/bin/bash",
            "pool_size": 1,
            "idle_timeout_ms": 300000,
            "max_history": 10,
        },
        "db": {
            "host": None,
            "port": 3306,
            "user": None,
            "password": None,
            "name": None,
            "ssl": {},
        },
    },
    "runner": {
        "workers": 4,
        "health_port": 0,
        "dry_run": False,
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Return a copy of *base* with *override* merged in, recursing into tables."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: str) -> dict:
    """Load a TOML config file over DEFAULT_CONFIG and validate it."""
    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e
    config = deep_merge(DEFAULT_CONFIG, raw)
    validate_config(config)
    return config


def validate_config(config: dict):
    """Raise ConfigurationError for anything that would stop the pipeline."""
    monitor = config.get("monitor", {})
    evaluator = config.get("evaluator", {})

    if not monitor.get("dir"):
        raise ConfigurationError("monitor.dir is required")
    if not evaluator.get("events"):
        raise ConfigurationError("evaluator.events is required")
    unknown = [e for e in evaluator["events"] if e not in EVENT_TYPES]
    if unknown:
        raise ConfigurationError(
            f"evaluator.events: unknown {', '.join(unknown)} "
            f"(choose from {', '.join(EVENT_TYPES)})"
        )
    if not evaluator.get("regex"):
        raise ConfigurationError("evaluator.regex is required")
    if not evaluator.get("reactors"):
        raise ConfigurationError("evaluator.reactors is required")

    try:
        re.compile(evaluator["regex"])
    except re.error as e:
        raise ConfigurationError(f"evaluator.regex: invalid pattern ({e})") from e

    for kind in evaluator["reactors"]:
        if kind not in REACTOR_KINDS:
            raise UnknownReactorKind(kind)
    # generators check their own parameters (target, table, columns)
    params = reactor_params(config)
    for kind in evaluator["reactors"]:
        (SHELL_GENERATORS.get(kind) or SQL_GENERATORS[kind])(params[kind])
    if any(kind in SQL_GENERATORS for kind in evaluator["reactors"]):
        if not config.get("reactor", {}).get("db", {}).get("host"):
            raise ConfigurationError("reactor.db.host is required for sqlInsert")

    for section, key, minimum in INTEGER_SETTINGS:
        table = config
        for name in section:
            table = table.get(name) or {}
        if key not in table:
            continue
        value = table[key]
        dotted = ".".join((*section, key))
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{dotted} must be an integer, got {value!r}")
        if value < minimum:
            raise ConfigurationError(f"{dotted} must be at least {minimum}")

    shell = config.get("reactor", {}).get("shell", {})
    for key in ("uid", "gid"):
        value = shell.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ConfigurationError(f"reactor.shell.{key} must be an integer, got {value!r}")


def reactor_params(config: dict) -> dict:
    """Per-kind parameter tables, keyed by reactor kind."""
    tables = config.get("reactor", {})
    return {
        kind: tables.get(kind) or {}
        for kind in REACTOR_KINDS
    }
