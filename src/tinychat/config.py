"""Runtime configuration.

Centralizes defaults and reads overrides from ``TINYCHAT_*`` environment
variables. The CLI loads a ``.env`` file before calling ``ChatSettings.from_env``.
"""

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_SYSTEM_PROMPT = "you are a helpful assistant"

# Generation configuration
DEFAULT_MAX_TOKENS = 2048  # Hard cap; reaching it is a successful completion
DEFAULT_FLUSH_EVERY = 4  # Tokens between decoded snapshots

# Backend configuration
DEFAULT_RESOURCE_LIMIT_BYTES = 20 * 1024 * 1024  # Backend cache / working-set limit
DEFAULT_MODEL_REPO = "bartowski/Llama-3.2-1B-Instruct-GGUF"

ENV_PREFIX = "TINYCHAT_"


class ChatSettings(BaseModel):
    """Settings for a chat client instance."""

    model_config = ConfigDict(protected_namespaces=())

    model_repo: str = Field(
        default=DEFAULT_MODEL_REPO,
        description="Hugging Face repository (or local .gguf path) holding the weights"
    )
    model_file: str | None = Field(
        default=None,
        description="Exact weights file inside the repository (None picks by quantization)"
    )
    models_dir: Path = Field(
        default=Path("./models"),
        description="Directory where downloaded weights are kept"
    )
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1)
    flush_every: int = Field(default=DEFAULT_FLUSH_EVERY, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    context_size: int = Field(default=4096, ge=256)
    gpu_layers: int = Field(default=-1, description="-1 offloads every layer")
    resource_limit_bytes: int = Field(default=DEFAULT_RESOURCE_LIMIT_BYTES, ge=0)
    store_backend: Literal["sqlite", "memory"] = Field(default="sqlite")
    db_path: Path = Field(default=Path("./tinychat.db"))
    max_history_messages: int | None = Field(
        default=None,
        description="Keep only the most recent N messages in the prompt (None keeps all)"
    )
    log_level: str = Field(default="WARNING")

    @field_validator("max_history_messages")
    @classmethod
    def _positive_history(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("max_history_messages must be at least 1")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, **overrides: Any) -> "ChatSettings":
        """Build settings from ``TINYCHAT_<FIELD>`` variables.

        Args:
            **overrides: Values that win over both environment and defaults
                (None values are ignored so CLI options can pass through unset)

        Returns:
            Validated settings
        """
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
