from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field


def _resolve_project_root() -> Path:
    override = os.getenv("ATLAS_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path.cwd().resolve()


class Settings(BaseModel):
    project_root: Path = Field(default_factory=_resolve_project_root)
    data_dir: Path = Field(default_factory=lambda: _resolve_project_root() / "data")
    database_url_override: str = Field(default_factory=lambda: os.getenv("ATLAS_DATABASE_URL", "").strip())

    log_level: str = Field(default_factory=lambda: os.getenv("ATLAS_LOG_LEVEL", "INFO").upper())

    github_token: str = Field(default_factory=lambda: os.getenv("GITHUB_TOKEN", ""))
    user_agent: str = "AtlasBot/1.0 (+https://atlas.local)"
    request_timeout_seconds: float = 15.0

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self.data_dir / "atlas.db"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite:///{self.database_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
