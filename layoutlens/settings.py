from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_INTERCHANGE_PORT = 7777


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LAYOUTLENS_", extra="ignore")

    # Storage
    artifacts_root: Path = Path("artifacts")

    # Worker runtime resolution. LAYOUTLENS_WORKER_RUNTIME wins over everything else.
    worker_runtime: Optional[str] = None
    worker_command: str = "python3"
    well_known_runtimes: List[str] = Field(
        default_factory=lambda: [
            "/opt/homebrew/bin/python3",
            "/usr/local/bin/python3",
            "/usr/bin/python3",
        ]
    )
    # Prepended to PATH for every child process.
    extra_path_dirs: List[str] = Field(default_factory=lambda: ["/opt/homebrew/bin", "/usr/local/bin"])
    resource_dir: Optional[Path] = None

    # Supervision
    worker_timeout_seconds: int = Field(default=600, ge=1)

    # Interchange server
    interchange_port: int = Field(default=DEFAULT_INTERCHANGE_PORT, ge=1, le=65535)

    gallery_history_limit: int = Field(default=50, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
