"""Configuration loading and validation for the YAML config file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from bluedeck.core.decode import DEFAULT_POLICY, UsabilityPolicy
from bluedeck.core.errors import ConfigError
from bluedeck.core.refresh import DEFAULT_REFRESH_INTERVAL_S

LOGGER = logging.getLogger(__name__)

DEFAULT_AGENT_PATH = "/org/bluedeck/agent"
DEFAULT_AGENT_CAPABILITY = "KeyboardDisplay"


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Config:
    refresh_interval_s: float = DEFAULT_REFRESH_INTERVAL_S
    agent_path: str = DEFAULT_AGENT_PATH
    agent_capability: str = DEFAULT_AGENT_CAPABILITY
    log_level: str | None = None
    log_file: Path | None = None
    extra_uuids: tuple[str, ...] = ()
    extra_appearances: tuple[int, ...] = ()

    def usability_policy(self) -> UsabilityPolicy:
        return DEFAULT_POLICY.extended(self.extra_uuids, self.extra_appearances)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "bluedeck" / "config.yaml"


def _load_schema_validator() -> Any:
    schema_text = resources.files("bluedeck.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at root")
    return loaded


def _build_config(doc: dict[str, Any], source: Path) -> Config:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    agent = doc.get("agent", {})
    log = doc.get("log", {})
    usability = doc.get("usability", {})
    log_file = log.get("file")
    return Config(
        refresh_interval_s=float(doc.get("refresh_interval_s", DEFAULT_REFRESH_INTERVAL_S)),
        agent_path=agent.get("path", DEFAULT_AGENT_PATH),
        agent_capability=agent.get("capability", DEFAULT_AGENT_CAPABILITY),
        log_level=log.get("level"),
        log_file=Path(log_file).expanduser() if log_file else None,
        extra_uuids=tuple(uuid.lower() for uuid in usability.get("extra_uuids", [])),
        extra_appearances=tuple(usability.get("extra_appearances", [])),
    )


def load_config(path: Path | None = None) -> Config:
    """Load the config file; an absent default file yields the defaults.

    An explicitly requested path must exist.
    """
    explicit = path is not None
    source = path if path is not None else default_config_path()
    if not source.exists():
        if explicit:
            raise ConfigError(f"Config file {source} does not exist")
        LOGGER.debug("No config file at %s, using defaults", source)
        return Config()
    return _build_config(_read_yaml(source), source)
