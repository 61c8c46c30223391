"""Runtime settings read from the environment (and an optional `.env`).

Values are read each time `get_settings()` is called so tests can change
them with `monkeypatch.setenv` without reloading modules.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_KEY = "dev-api-key-12345"
DEFAULT_CORS_ORIGINS = "http://localhost:1420,http://localhost:3000,tauri://localhost"


@dataclass
class Settings:
    api_key: str = DEFAULT_API_KEY
    data_dir: Path = Path("data")
    scoreboards_file: str = "scoreboards-data.json"
    matches_file: str = "tennis-matches-data.json"
    cors_origins: List[str] = field(default_factory=lambda: DEFAULT_CORS_ORIGINS.split(","))
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    @property
    def scoreboards_path(self) -> Path:
        return self.data_dir / self.scoreboards_file

    @property
    def matches_path(self) -> Path:
        return self.data_dir / self.matches_file


def _split(val: str) -> List[str]:
    return [v.strip() for v in val.split(",") if v.strip()]


def get_settings() -> Settings:
    return Settings(
        api_key=os.getenv("API_KEY") or DEFAULT_API_KEY,
        data_dir=Path(os.getenv("DATA_DIR", "data")),
        scoreboards_file=os.getenv("SCOREBOARDS_FILE", "scoreboards-data.json"),
        matches_file=os.getenv("MATCHES_FILE", "tennis-matches-data.json"),
        cors_origins=_split(os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
