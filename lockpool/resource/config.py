"""Configuration management."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # console or json

    # Git
    git_executable: str = "git"
    git_timeout_seconds: float = 300.0
    committer_name: str = "Lock Pool"
    committer_email: str = "lockpool@localhost"

    # Coordination
    default_retry_delay_seconds: float = 10.0

    class Config:
        env_prefix = "LOCKPOOL_"
        env_file = ".env"
        env_file_encoding = "utf-8"
