from __future__ import annotations

import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# Persisted file next to the package (NOTE: container disks can reset on redeploy)
DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "judging.sqlite")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="JUDGING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    db_path: str = DEFAULT_DB_PATH
    # seconds sqlite waits on a locked database before the write fails
    db_timeout: float = 5.0

    current_round: int = 1

    log_level: str = "INFO"
    log_file: str = ""

    server_host: str = "0.0.0.0"
    server_port: int = 8000


@lru_cache()
def get_settings() -> Settings:
    return Settings()
