"""Cluster configuration: defaults, a YAML file and environment overrides."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator, Mapping
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

PREFIX = "2pc_"

_log = logging.getLogger(__name__)


@dataclass
class PaxosConfig:
    """Parameters of the consensus protocol."""

    csm_replicas: int = field(default=1, metadata={"key": "state_machine_replicas"})
    csm_buffer_size: int = field(default=10, metadata={"key": "state_machine_queue_size"})
    majority: int = field(default=1, metadata={"key": "majority"})
    leader_timeout: int = field(default=10, metadata={"key": "leader_timeout"})  # seconds
    leader_ping_interval: int = field(default=5, metadata={"key": "leader_ping_interval"})  # seconds
    consensus_timeout: int = field(default=100, metadata={"key": "consensus_timeout"})  # milliseconds


@dataclass
class Config:
    """Settings of one cluster manager."""

    subnet: int = field(default=6001, metadata={"key": "subnet"})
    replicas: int = field(default=1, metadata={"key": "replicas"})
    replicas_starting_index: int = field(default=1, metadata={"key": "replicas_starting_index"})
    cluster_name: str = field(default="C0", metadata={"key": "cluster_name"})
    log_level: str = field(default="debug", metadata={"key": "log_level"})
    mongodb: str = field(default="mongodb://localhost:27017", metadata={"key": "mongodb"})
    database: str = field(default="global", metadata={"key": "database"})
    paxos: PaxosConfig = field(default_factory=PaxosConfig, metadata={"key": "paxos"})


def default_config() -> Config:
    """Return the built-in configuration."""
    return Config()


def _flatten(mapping: Mapping[Any, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    for key, value in mapping.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            yield from _flatten(value, name + ".")
        else:
            yield name, value


def _to_flat(config: Config) -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for top in fields(config):
        value = getattr(config, top.name)
        if isinstance(value, PaxosConfig):
            for inner in fields(value):
                flat[f"{top.metadata['key']}.{inner.metadata['key']}"] = getattr(value, inner.name)
        else:
            flat[top.metadata["key"]] = value
    return flat


def _coerce(key: str, value: Any, kind: type) -> Any:
    if kind is int:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)):
            return int(value)
        if value is None or value == "":
            return 0
        if isinstance(value, str):
            try:
                return int(value, 0)
            except ValueError:
                try:
                    return int(value, 10)
                except ValueError:
                    raise ValueError(f"cannot parse {key}: {value!r} is not an integer") from None
        raise ValueError(f"cannot parse {key}: unexpected value {value!r}")
    if isinstance(value, bool):
        return "1" if value else "0"
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        raise ValueError(f"cannot parse {key}: unexpected value {value!r}")
    return str(value)


def _build(flat: Mapping[str, Any]) -> Config:
    def make(cls: type, prefix: str) -> Any:
        kwargs = {}
        for item in fields(cls):
            key = prefix + item.metadata["key"]
            if item.name == "paxos":
                kwargs[item.name] = make(PaxosConfig, key + ".")
            else:
                kwargs[item.name] = _coerce(key, flat[key], type(item.default))
        return cls(**kwargs)

    return make(Config, "")


def _read_yaml(path: str | Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        _log.warning("error loading %s: %s", path, exc)
        return {}
    if not isinstance(data, Mapping):
        return {}
    return dict(_flatten(data))


def _read_environ(environ: Mapping[str, str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for name, value in environ.items():
        if not name.startswith(PREFIX):
            continue
        key = name[len(PREFIX):].lower().replace("__", ".")
        if key:
            values[key] = value
    return values


def load_config(path: str | Path, environ: Mapping[str, str] | None = None) -> Config:
    """Load the configuration: defaults, then the YAML file, then environment variables.

    A missing or unreadable file is logged and skipped; a value that cannot be
    converted to its setting's type raises ValueError.
    """
    if environ is None:
        environ = os.environ
    flat = _to_flat(default_config())
    flat.update(_read_yaml(path))
    flat.update(_read_environ(environ))
    config = _build(flat)
    _log.info(
        "\n================ Loaded Configuration ================\n%s\n=============================================",
        json.dumps(asdict(config), indent="\t"),
    )
    return config