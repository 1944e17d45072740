"""Configuration models for the ``graphform.yaml`` project file."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from graphform.engine.retry import RetryPolicy


class Settings(BaseSettings):
    """Process-level settings read from ``GRAPHFORM_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="GRAPHFORM_", extra="ignore")

    stage: str | None = None
    state_root: Path | None = None
    log: str | None = None


class StateConfig(BaseModel):
    """Where resource state is persisted."""

    model_config = ConfigDict(extra="forbid")

    backend: Literal["local", "memory"] = "local"
    # Relative paths are resolved against the project directory.
    root: Path = Path(".graphform")


class ExecutionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    concurrency: int = Field(default=8, ge=1)
    max_retries: int = Field(default=2, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries + 1,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )


class Config(BaseModel):
    """Project configuration, validated directly from the YAML document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    stack: str = Field(pattern=r"^[a-zA-Z0-9_.-]+$")
    stage: str = Field(default="dev", pattern=r"^[a-zA-Z0-9_.-]+$")
    # ``module.path:function`` or an entry point name in group ``graphform.programs``.
    program: str
    # Keyword arguments passed to the program callable.
    with_: dict[str, Any] = Field(default_factory=dict, alias="with")
    state: StateConfig = Field(default_factory=StateConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    config_dir: Path = Path()

    @property
    def state_root(self) -> Path:
        root = self.state.root
        return root if root.is_absolute() else self.config_dir / root
