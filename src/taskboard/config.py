from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

PROVIDERS = ("local", "remote")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    provider: str = "local"
    db_path: str = "./data/taskboard.db"
    storage_key: str = "taskboard-tasks"
    remote_url: str = ""
    remote_table: str = "task"
    project_id: str = ""
    public_key: str = ""
    timeout_seconds: float = 5.0
    log_level: str = "INFO"
    log_dir: Path = Path("./logs")

    def __post_init__(self):
        if self.provider not in PROVIDERS:
            raise ValueError(f"Unknown TASKBOARD_PROVIDER {self.provider!r}; expected one of {PROVIDERS}")
        if self.provider == "remote" and not self.remote_url:
            raise ValueError("TASKBOARD_REMOTE_URL is required for the remote provider")


def load_settings() -> Settings:
    load_dotenv(override=False)
    return Settings(
        provider=os.getenv("TASKBOARD_PROVIDER", "local").strip().lower(),
        db_path=os.getenv("DB_PATH", "./data/taskboard.db"),
        storage_key=os.getenv("TASKBOARD_STORAGE_KEY", "taskboard-tasks"),
        remote_url=os.getenv("TASKBOARD_REMOTE_URL", ""),
        remote_table=os.getenv("TASKBOARD_REMOTE_TABLE", "task"),
        project_id=os.getenv("TASKBOARD_PROJECT_ID", ""),
        public_key=os.getenv("TASKBOARD_PUBLIC_KEY", ""),
        timeout_seconds=_env_float("TASKBOARD_TIMEOUT_SECONDS", 5.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=Path(os.getenv("LOG_DIR", "./logs")),
    )
