from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from flcm.core.config import FlcmConfig
from flcm.core.exceptions import ConfigError

CONFIG_RELATIVE_PATH = Path(".flcm") / "config.yml"
ENV_PREFIX = "FLCM_"


class ConfigLoader:
    """Loads and validates FLCM configuration.

    Reads ``.flcm/config.yml`` under the workspace root and lets
    ``FlcmConfig`` apply environment variable overrides on top.
    """

    def __init__(self, root: Path | None = None):
        self.root = root if root is not None else Path.cwd()

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_RELATIVE_PATH

    def load(self) -> FlcmConfig:
        """Load configuration.

        Priority (highest to lowest):
        1. Environment variables (FLCM_SECTION__KEY)
        2. Config file (.flcm/config.yml relative to root)
        3. Defaults
        """
        file_config = self._load_from_file()
        storage = file_config.get("storage", {}) or {}
        if not isinstance(storage, dict):
            msg = f"Configuration 'storage' must be a mapping, got {type(storage).__name__}"
            raise ConfigError(msg)

        try:
            env_config = FlcmConfig()
            merged = self._merge_config(
                base=env_config.model_dump(mode="json"),
                override=file_config,
                env_override_paths=self._collect_env_override_paths(),
            )
            merged.setdefault("storage", {})["root"] = str(self.root)
            return FlcmConfig.model_validate(merged)
        except ValidationError as e:
            msg = f"Invalid configuration in {self.config_path}: {e}"
            raise ConfigError(msg) from e

    def write_default(self) -> Path:
        """Write the default configuration file if none exists yet."""
        path = self.config_path
        if path.exists():
            return path
        defaults = FlcmConfig().model_dump(mode="json", exclude={"storage": {"root"}, "logging": True})
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(defaults, sort_keys=False), encoding="utf-8")
        return path

    def _collect_env_override_paths(self) -> set[tuple[str, ...]]:
        """Return the set of config paths defined via environment variables."""
        env_paths: set[tuple[str, ...]] = set()
        for key in os.environ:
            if not key.startswith(ENV_PREFIX):
                continue
            parts = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
            if parts:
                env_paths.add(tuple(parts))
        return env_paths

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
        env_override_paths: set[tuple[str, ...]],
        current_path: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        """Merge override into base, skipping keys provided via env vars."""
        merged = deepcopy(base)
        for key, value in override.items():
            path = (*current_path, str(key).lower())
            if path in env_override_paths:
                continue
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = self._merge_config(merged[key], value, env_override_paths, path)
            else:
                merged[key] = value
        return merged

    def _load_from_file(self) -> dict[str, Any]:
        path = self.config_path
        if not path.exists():
            return {}
        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            msg = f"Invalid YAML in {path}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(data, dict):
            msg = f"Configuration root must be a mapping, got {type(data).__name__}"
            raise ConfigError(msg)
        return data


def load_config(root: Path | None = None) -> FlcmConfig:
    return ConfigLoader(root).load()
