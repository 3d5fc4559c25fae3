"""Runtime settings, loaded from the environment and an optional ``.env`` file."""

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from appforge.analyzer.config import AnalyzerConfig

MAX_RETRIES_LIMIT = 10
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_INSTALL_COMMAND = "bun i"

ENV_PREFIX = "APPFORGE_"


class Settings(BaseModel):
    """Settings shared by the CLI and the pipeline."""

    model_config = ConfigDict(frozen=False)

    model: str = DEFAULT_MODEL
    llm_provider: Literal["auto", "anthropic", "openai"] = "auto"
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    max_retries: int = 3
    max_tool_rounds: int = 8
    max_output_tokens: int = 8192
    similarity_threshold: float = 0.6
    data_dir: Path = Path("./data")
    sandbox_workdir: str = "/app"
    install_command: str = DEFAULT_INSTALL_COMMAND
    boilerplate_preset: str | None = "default"
    analyzer: AnalyzerConfig = Field(default_factory=AnalyzerConfig)

    @property
    def database_path(self) -> Path:
        return self.data_dir / "appforge.db"

    @property
    def object_store_dir(self) -> Path:
        return self.data_dir / "objects"

    @property
    def sandbox_dir(self) -> Path:
        return self.data_dir / "machines"

    @property
    def boilerplate_dir(self) -> Path:
        return self.data_dir / "boilerplates"

    @classmethod
    def from_env(cls, env_file: str | None = None, **overrides) -> "Settings":
        """Build settings from ``APPFORGE_*`` environment variables.

        Args:
            env_file: Optional path to a dotenv file; ``.env`` is searched otherwise.
            **overrides: Explicit values (e.g. from CLI flags) that win over
                the environment. ``None`` values are ignored.

        Returns:
            Settings with ``max_retries`` clamped to ``[0, MAX_RETRIES_LIMIT]``.
        """
        load_dotenv(env_file)

        values: dict = {
            "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
        }
        for field_name in (
            "model",
            "llm_provider",
            "max_retries",
            "max_tool_rounds",
            "max_output_tokens",
            "similarity_threshold",
            "data_dir",
            "sandbox_workdir",
            "install_command",
            "boilerplate_preset",
        ):
            raw = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is not None and raw != "":
                values[field_name] = raw

        values.update({k: v for k, v in overrides.items() if v is not None})
        settings = cls(**values)
        settings.max_retries = clamp_retries(settings.max_retries)
        return settings

    def resolved_model(self, provider: str) -> str:
        if provider == "openai" and self.model.startswith("claude-"):
            return DEFAULT_OPENAI_MODEL
        return self.model


def clamp_retries(max_retries: int) -> int:
    return max(0, min(max_retries, MAX_RETRIES_LIMIT))
