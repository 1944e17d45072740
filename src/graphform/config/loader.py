"""YAML configuration file loader."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from graphform.config.schema import Config, Settings
from graphform.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "graphform.yaml"

# Config field -> environment variable.
_ENV_MAP: dict[str, str] = {
    "stage": "GRAPHFORM_STAGE",
    "state_root": "GRAPHFORM_STATE_ROOT",
}


def _resolve_overrides(raw: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve overridable fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}
    settings = Settings()

    stage = raw.get("stage")
    if stage is None:
        stage = settings.stage
    if stage is None:
        stage = dotenv_vals.get(_ENV_MAP["stage"])
    if stage is not None:
        raw["stage"] = stage

    state = raw.get("state") or {}
    if not isinstance(state, dict):
        raise ConfigError(f"'state' must be a mapping, got {type(state).__name__}")
    if state.get("root") is None:
        root = settings.state_root
        if root is None:
            root = dotenv_vals.get(_ENV_MAP["state_root"])
        if root is not None:
            state = {**state, "root": root}
    raw["state"] = state
    return raw


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    ``path`` may be the file itself or the directory holding ``graphform.yaml``.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)
    if path.is_dir():
        path = path / DEFAULT_CONFIG_NAME

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        raw = _resolve_overrides(raw, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    logger.info("Loaded config from %s (stack=%s, stage=%s)", path, config.stack, config.stage)
    return config
