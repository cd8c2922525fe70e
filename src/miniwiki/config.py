"""Application configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    data_dir: Path = Path("data")
    debug: bool = False
    app_title: str = "MiniWiki"
    history_limit: int = 100
    home_page: str = "Home"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="MINIWIKI_",
        env_file=".env",
        env_file_encoding="utf-8",
    )


settings = Settings()
