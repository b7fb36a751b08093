import logging

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "STRATLAB Backend"
    cors_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Daily bars loaded on startup when the file exists
    default_csv_path: str = "data/default.csv"
    # Worker processes for batch evaluation (<= 1 runs serially)
    batch_processes: int = 4
    page_size: int = 10
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="STRATLAB_", env_file=".env", env_file_encoding="utf-8")


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


settings = Settings()
