"""
Settings — process-wide knobs for a spin run.

Resolved in precedence order:
    CLI flag  >  SPIN_* env var  >  default

The CLI builds a Settings once and passes it down explicitly; nothing
reads the environment after that.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from spin.core.errors import ConfigError
from spin.core.reliability.retry import RetryPolicy

DEFAULT_CONFIG_FILENAME = "spin.yml"

# field name → environment variable
_ENV_VARS = {
    "config_filename": "SPIN_CONFIG_FILENAME",
    "tool": "SPIN_TOOL",
    "tool_timeout": "SPIN_TOOL_TIMEOUT",
    "parallelism": "SPIN_PARALLELISM",
    "lock_backend": "SPIN_LOCK_BACKEND",
    "lock_table": "SPIN_LOCK_TABLE",
    "lock_region": "SPIN_LOCK_REGION",
    "lock_ttl": "SPIN_LOCK_TTL",
    "lock_max_attempts": "SPIN_LOCK_MAX_ATTEMPTS",
    "lock_retry_delay": "SPIN_LOCK_RETRY_DELAY",
    "lock_max_retry_delay": "SPIN_LOCK_MAX_RETRY_DELAY",
}


class Settings(BaseModel):
    """Effective settings for one invocation."""

    config_filename: str = DEFAULT_CONFIG_FILENAME
    tool: str = "terraform"
    tool_timeout: float | None = Field(default=None, gt=0)
    parallelism: int = Field(default=0, ge=0)  # 0 = one worker per batch member

    lock_backend: Literal["dynamodb", "memory"] | None = None
    lock_table: str | None = None
    lock_region: str | None = None
    lock_ttl: float = Field(default=3600.0, ge=0)
    lock_max_attempts: int = Field(default=30, ge=1)
    lock_retry_delay: float = Field(default=1.0, ge=0)
    lock_max_retry_delay: float = Field(default=10.0, ge=0)

    @property
    def effective_lock_backend(self) -> str:
        """Explicit backend, else dynamodb when a table is configured."""
        if self.lock_backend:
            return self.lock_backend
        return "dynamodb" if self.lock_table else "memory"

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.lock_max_attempts,
            base_delay=self.lock_retry_delay,
            max_delay=self.lock_max_retry_delay,
        )

    @classmethod
    def load(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> Settings:
        """Build settings from the environment plus explicit overrides.

        Overrides whose value is None are ignored, so CLI options that
        were not given fall through to the environment.

        Raises:
            ConfigError: A value does not validate.
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        for field_name, var in _ENV_VARS.items():
            value = env.get(var)
            if value not in (None, ""):
                data[field_name] = value
        data.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings: {e}") from e
