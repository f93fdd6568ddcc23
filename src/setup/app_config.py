import inject

from src.orchestrator.application.correctness_loop import CorrectnessLoopController
from src.orchestrator.application.dispatcher import ExecutionDispatcher
from src.orchestrator.application.resolver import DependencyResolver
from src.orchestrator.application.services import TaskService
from src.orchestrator.application.skill_registry import SkillRegistry
from src.orchestrator.application.task_store import TaskStore
from src.orchestrator.domain.repositories import TaskManagerRepository, TaskRepository
from src.setup.celery_config import get_celery_settings
from src.setup.db_config import get_database_settings
from src.setup.orchestrator_config import OrchestratorSettings, get_orchestrator_settings


def build_repository(settings: OrchestratorSettings) -> TaskRepository:
    if settings.STORE_BACKEND == "memory":
        from src.orchestrator.infrastructure.memory.repository import InMemoryTaskRepository

        return InMemoryTaskRepository()

    from src.orchestrator.infrastructure.postgres.orm import PostgresOrm
    from src.orchestrator.infrastructure.postgres.repository import PostgresTaskRepository

    db = get_database_settings()
    return PostgresTaskRepository(PostgresOrm(db.DATABASE_URL, echo=db.DATABASE_ECHO))


def build_task_manager(skills: SkillRegistry) -> TaskManagerRepository:
    from src.orchestrator.infrastructure.celery.app import celery_app
    from src.orchestrator.infrastructure.celery.task_manager import CeleryTaskManager
    from src.orchestrator.infrastructure.celery.task_registry import TaskRegistry

    routes = TaskRegistry(get_celery_settings().CATEGORY_QUEUES)
    return CeleryTaskManager(celery_app, skills, routes)


def bind_orchestrator(
    binder: inject.Binder,
    settings: OrchestratorSettings,
    repository: TaskRepository,
    task_manager: TaskManagerRepository,
    skills: SkillRegistry,
) -> None:
    store = TaskStore(repository)
    controller = CorrectnessLoopController(
        store,
        max_retries=settings.MAX_RETRIES,
        feedback_history_limit=settings.FEEDBACK_HISTORY_LIMIT,
    )
    resolver = DependencyResolver(
        repository, skills, default_timeout_seconds=settings.DEFAULT_TIMEOUT_SECONDS
    )
    dispatcher = ExecutionDispatcher(store, controller, skills, task_manager)

    binder.bind(TaskRepository, repository)
    binder.bind(TaskManagerRepository, task_manager)
    binder.bind(SkillRegistry, skills)
    binder.bind(TaskStore, store)
    binder.bind(CorrectnessLoopController, controller)
    binder.bind(DependencyResolver, resolver)
    binder.bind(ExecutionDispatcher, dispatcher)
    binder.bind(
        TaskService,
        TaskService(store, resolver, dispatcher, commit_attempts=settings.BATCH_COMMIT_ATTEMPTS),
    )


def configure_di(settings: OrchestratorSettings | None = None) -> None:
    """Configure the process-wide injector once."""
    if inject.is_configured():
        return
    settings = settings or get_orchestrator_settings()
    skills = SkillRegistry(skills_file=settings.SKILLS_FILE)
    repository = build_repository(settings)
    task_manager = build_task_manager(skills)

    def _config(binder: inject.Binder) -> None:
        bind_orchestrator(binder, settings, repository, task_manager, skills)

    inject.configure(_config)
