from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from hear_and_there.config.models import AppConfig, ConfigLoadRequest

logger = logging.getLogger(__name__)

KeyPath = Tuple[str, ...]

_SCALAR_TYPES = (str, int, float, bool)
# Environment values that clear a nullable setting, e.g. APP__LLM__FALLBACK_MODEL=none.
_NULL_VALUES = ("none", "null")


def _merge_into(target: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> None:
    for key, value in overlay.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, MutableMapping):
            _merge_into(current, value)
        else:
            target[key] = value


def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping, got: {type(data).__name__}")
    return data


def _env_overrides(environ: Mapping[str, str], prefix: str) -> Dict[KeyPath, str]:
    """Collect `PREFIX__SECTION__KEY=value` variables as key paths, e.g. ("tours", "min_poi_count")."""
    overrides: Dict[KeyPath, str] = {}
    for name, value in environ.items():
        if not name.startswith(prefix):
            continue
        path = tuple(part.lower() for part in name[len(prefix) :].split("__") if part)
        if not path:
            raise ValueError(f"Invalid environment variable override name: {name}")
        overrides[path] = value
    return overrides


def _set_scalar(config: MutableMapping[str, Any], path: KeyPath, raw: str) -> None:
    dotted = ".".join(path)
    node: Any = config
    for segment in path[:-1]:
        if not isinstance(node, MutableMapping) or segment not in node:
            raise KeyError(f"Unknown configuration key path: {dotted}")
        node = node[segment]
    if not isinstance(node, MutableMapping):
        raise TypeError(f"Configuration key path does not point to a mapping: {dotted}")

    leaf = path[-1]
    if leaf not in node:
        raise KeyError(f"Unknown configuration key path: {dotted}")
    current = node[leaf]
    if current is not None and not isinstance(current, _SCALAR_TYPES):
        raise TypeError(
            f"Environment variable overrides are only allowed for scalar values. "
            f"Key '{dotted}' is {type(current).__name__}."
        )
    # The raw string is coerced to the field's declared type on validation.
    node[leaf] = None if raw.strip().lower() in _NULL_VALUES else raw


class YamlConfigLoader:
    """
    Build the effective AppConfig.

    Precedence, lowest first: model defaults, the YAML file, then `PREFIX__...`
    environment variables. A `.env` file only fills variables that are not already
    set in the process environment.
    """

    def __init__(self, environ: Optional[MutableMapping[str, str]] = None) -> None:
        self._environ = environ

    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        config: Dict[str, Any] = AppConfig().model_dump(mode="python")

        if request.yaml_path is not None:
            _merge_into(config, _load_yaml_mapping(Path(request.yaml_path)))
            logger.debug("Config file merged. path=%s", request.yaml_path)

        if request.dotenv_path is not None and Path(request.dotenv_path).is_file():
            load_dotenv(dotenv_path=request.dotenv_path, override=False)

        overrides = _env_overrides(self._environ if self._environ is not None else os.environ, request.env_prefix)
        for path, raw in sorted(overrides.items()):
            _set_scalar(config, path, raw)
        if overrides:
            logger.debug("Environment overrides applied. keys=%s", ",".join(".".join(p) for p in sorted(overrides)))
        return AppConfig.model_validate(config)
