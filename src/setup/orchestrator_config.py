from pathlib import Path
from typing import Literal

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class OrchestratorSettings(BaseSettings):
    """Task store, dispatch and correctness-loop policy."""
    STORE_BACKEND: Literal["memory", "postgres"] = "postgres"
    MAX_RETRIES: int = Field(default=3, ge=0)
    FEEDBACK_HISTORY_LIMIT: int = Field(default=5, ge=1)
    DEFAULT_TIMEOUT_SECONDS: int = Field(default=1800, gt=0)
    BATCH_COMMIT_ATTEMPTS: int = Field(default=3, ge=1)
    DISPATCH_INTERVAL_SEC: float = 1.0
    SWEEP_INTERVAL_SEC: float = 15.0
    DISPATCH_BATCH_SIZE: int | None = None
    SKILLS_FILE: Path | None = None

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_orchestrator_settings() -> OrchestratorSettings:
    return OrchestratorSettings()
