"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables prefixed with CL_."""

    # Database
    database_url: str = ""
    write_batch_size: int = 500

    # Inputs
    snapshot_dir: str = "data/snapshot"
    reporting_currency: str = "USD"

    model_config = {"env_file": ".env", "env_prefix": "CL_"}


def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
