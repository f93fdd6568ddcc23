from src.orchestrator.infrastructure.celery.app import celery_app
from src.setup.logging_config import configure_logging
from src.setup.stream_config import configure_stream_publisher
from src.setup.worker_config import get_worker_settings


def main() -> None:
    settings = get_worker_settings()
    configure_logging(settings.LOG_LEVEL)
    configure_stream_publisher()
    celery_app.worker_main(
        [
            "worker",
            "-l",
            settings.LOG_LEVEL,
            "--concurrency",
            str(settings.CELERY_CONCURRENCY),
            "-Q",
            settings.CELERY_QUEUES,
        ]
    )


if __name__ == "__main__":
    main()
