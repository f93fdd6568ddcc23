import asyncio
import logging
from contextlib import asynccontextmanager

import inject
from fastapi import FastAPI

from src.orchestrator.application.dispatcher import ExecutionDispatcher
from src.orchestrator.presentation.routes import router as api_router
from src.setup.api_config import get_api_settings
from src.setup.app_config import configure_di
from src.setup.logging_config import configure_logging
from src.setup.orchestrator_config import get_orchestrator_settings
from src.setup.stream_config import configure_stream_consumer

settings = get_api_settings()
configure_logging(settings.LOG_LEVEL)
configure_di()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    orchestrator = get_orchestrator_settings()
    stop = asyncio.Event()
    background: asyncio.Task | None = None
    consumer = configure_stream_consumer() if settings.START_STREAM_CONSUMER else None

    if consumer is not None:
        await consumer.start()
    if settings.START_DISPATCHER:
        dispatcher = inject.instance(ExecutionDispatcher)
        background = asyncio.create_task(
            dispatcher.run(
                stop,
                dispatch_interval=orchestrator.DISPATCH_INTERVAL_SEC,
                sweep_interval=orchestrator.SWEEP_INTERVAL_SEC,
                batch_size=orchestrator.DISPATCH_BATCH_SIZE,
            ),
            name="dispatcher",
        )
        logger.info("Dispatcher started")
    try:
        yield
    finally:
        stop.set()
        if background is not None:
            await background
        if consumer is not None:
            await consumer.stop()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Task orchestrator with dependency resolution and a critique retry loop",
    lifespan=lifespan,
)

app.include_router(api_router, prefix="")
