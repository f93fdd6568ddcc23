from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class WorkerSettings(BaseSettings):
    """Configuration for the skill-running Celery worker."""
    AGENT_RUNTIME_URL: str = "http://agent-runtime:8080"
    AGENT_TIMEOUT_SEC: float = 900.0
    LOG_LEVEL: str = "INFO"
    CELERY_CONCURRENCY: int = 2
    CELERY_QUEUES: str = "celery"

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_worker_settings() -> WorkerSettings:
    """Return a fresh worker settings instance."""
    return WorkerSettings()
