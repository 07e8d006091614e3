"""Settings loading and validation for YAML-based coretemp configuration."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from coretemp.core.errors import ConfigLoadError, ConfigValidationError
from coretemp.core.model import Settings

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources: tuple[str, ...]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("coretemp.schemas").joinpath("settings.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "coretemp/config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read settings file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Settings file {path} must contain a mapping at root")
    return loaded


def _validate(doc: dict[str, Any], source: Path | Traversable) -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on"}:
            return True
        if lowered in {"false", "no", "off"}:
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in base.items()}
    for section, values in override.items():
        merged.setdefault(section, {}).update(values)
    return merged


def _build_settings(doc: dict[str, Any]) -> Settings:
    device = doc.get("device", {})
    timing = doc.get("timing", {})
    hrm = doc.get("hrm", {})
    readings = doc.get("readings", {})
    defaults = Settings()
    return Settings(
        name_prefix=str(device.get("name_prefix", defaults.name_prefix)),
        scan_timeout_s=float(timing.get("scan_timeout_s", defaults.scan_timeout_s)),
        connect_timeout_s=float(timing.get("connect_timeout_s", defaults.connect_timeout_s)),
        poll_interval_s=float(timing.get("poll_interval_s", defaults.poll_interval_s)),
        initial_poll_delay_s=float(timing.get("initial_poll_delay_s", defaults.initial_poll_delay_s)),
        command_timeout_s=float(timing.get("command_timeout_s", defaults.command_timeout_s)),
        auto_hrm_discovery=_normalize_bool(
            hrm.get("auto_discovery", defaults.auto_hrm_discovery),
            context="hrm.auto_discovery",
        ),
        csv_path=readings.get("csv_path", defaults.csv_path),
    )


def load_settings(path: Path | None = None) -> LoadedSettings:
    """Load packaged defaults, then the user file, then an explicit ``path``."""
    packaged = resources.files("coretemp.schemas").joinpath("defaults.yaml")
    doc = _read_yaml(packaged)
    _validate(doc, packaged)
    sources = [str(packaged)]
    warnings: list[str] = []

    user_path = user_config_path()
    candidates = [user_path] if user_path.is_file() else []
    if path is not None:
        if not path.is_file():
            raise ConfigLoadError(f"Settings file {path} does not exist")
        candidates.append(path)

    origins: dict[str, Path] = {}
    for candidate in candidates:
        override = _read_yaml(candidate)
        _validate(override, candidate)
        for section, values in sorted(override.items()):
            for key in sorted(values):
                dotted = f"{section}.{key}"
                if dotted in origins:
                    warning = f"Setting '{dotted}' from {candidate} overrides {origins[dotted]}"
                    LOGGER.warning(warning)
                    warnings.append(warning)
                origins[dotted] = candidate
        doc = _merge(doc, override)
        sources.append(str(candidate))

    return LoadedSettings(settings=_build_settings(doc), sources=tuple(sources), warnings=tuple(warnings))
