"""
Environment configuration.

Values come from the process environment after `.env` and then `.env.local`
are loaded; `.env.local` overrides `.env`, and neither overrides variables
already exported in the shell.
"""

import os
from pathlib import Path
from typing import Mapping

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from seeder.core.errors import ConfigError

ENV_FILES = (".env", ".env.local")


class EnvConfig(BaseModel):
    """
    Connection settings for the two seeded systems.

    Attributes:
        database_url: WMS database URL
        shopify_store_domain: Shop domain
        shopify_access_token: Admin API token
        shopify_api_version: Admin API version
        seed_environment: Environment name; checkpoints are stored per environment
        progress_dir: Root directory for checkpoints
        db_min_pool: Minimum database pool size
        db_max_pool: Maximum database pool size
    """

    database_url: str = Field(..., min_length=1)
    shopify_store_domain: str = Field(..., min_length=1)
    shopify_access_token: str = Field(..., min_length=1, repr=False)
    shopify_api_version: str = "2024-01"
    seed_environment: str = Field("staging", pattern=r"^[a-zA-Z0-9_\-]+$")
    progress_dir: str = ".progress"
    db_min_pool: int = Field(1, ge=1)
    db_max_pool: int = Field(4, ge=1)

    @model_validator(mode="after")
    def check_pool_bounds(self) -> "EnvConfig":
        if self.db_max_pool < self.db_min_pool:
            raise ValueError("DB_MAX_POOL must be >= DB_MIN_POOL")
        if not self.database_url.startswith(("postgres://", "postgresql://")):
            raise ValueError("DATABASE_URL must be a postgres:// or postgresql:// URL")
        return self


def load_env_files(base_dir: str | Path = ".") -> dict[str, str]:
    """Read `.env` then `.env.local` from base_dir; later files win."""
    values: dict[str, str] = {}
    for name in ENV_FILES:
        path = Path(base_dir) / name
        if path.exists():
            values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    return values


def get_env_config(
    environ: Mapping[str, str] | None = None,
    base_dir: str | Path = ".",
) -> EnvConfig:
    """
    Build the environment configuration.

    Args:
        environ: Environment to read (defaults to os.environ)
        base_dir: Directory holding the .env files

    Returns:
        Validated EnvConfig

    Raises:
        ConfigError: If required values are missing or invalid
    """
    merged = load_env_files(base_dir)
    merged.update(os.environ if environ is None else environ)

    raw = {field: merged[field.upper()] for field in EnvConfig.model_fields if field.upper() in merged}
    try:
        return EnvConfig.model_validate(raw)
    except PydanticValidationError as e:
        problems = "\n".join(
            f"{'.'.join(str(part) for part in err['loc']).upper() or '<env>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid environment configuration:\n{problems}") from e
