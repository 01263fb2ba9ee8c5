from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration for the face-recognition library and its maintenance jobs.

    Values are loaded from environment variables and `.env`.

    Notes:
    - FR_DATA_DIR is the root holding `<user>/files/...` trees; exclusion markers
      are looked up on disk under it.
    - Batch size and yield cadence only tune throughput; resume correctness does
      not depend on them.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    FR_DB_PATH: Path = Field(default=Path("data/fr_db.sqlite"))

    # User file trees (mirrors the file index in the `filecache` table)
    FR_DATA_DIR: Path = Field(default=Path("data/users"))

    # Stale image removal
    FR_STALE_BATCH_SIZE: int = Field(default=1000)
    FR_STALE_YIELD_EVERY: int = Field(default=200)
    # Mount types whose files stay eligible; everything else (shared/external/group)
    # is treated as no longer visible. Env accepts "home,group" or a JSON list.
    FR_ALLOWED_MOUNT_TYPES: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["home"])

    # Background job runner
    # 0 disables the time budget.
    FR_JOB_TIMEOUT_SEC: int = Field(default=0)
    FR_WORKER_POLL_SEC: int = Field(default=900)

    # Logging (diagnostic; rotated daily)
    FR_LOG_DIR: Path = Field(default=Path("_logs"))
    FR_LOG_LEVEL: str = Field(default="INFO")
    # Timed rotation retention count (days). Old log files are auto-deleted.
    FR_LOG_BACKUP_COUNT: int = Field(default=14)

    @field_validator("FR_STALE_BATCH_SIZE", "FR_STALE_YIELD_EVERY")
    @classmethod
    def _positive(cls, v: int) -> int:
        if int(v) < 1:
            raise ValueError("must be >= 1")
        return int(v)

    @field_validator("FR_ALLOWED_MOUNT_TYPES", mode="before")
    @classmethod
    def _split_mount_types(cls, v: object) -> object:
        if isinstance(v, str):
            raw = v.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [part.strip() for part in raw.split(",") if part.strip()]
        return v

    @field_validator("FR_JOB_TIMEOUT_SEC")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if int(v) < 0:
            raise ValueError("must be >= 0")
        return int(v)


def load_settings() -> Settings:
    s = Settings()
    # Ensure parent dir exists
    s.FR_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    return s
