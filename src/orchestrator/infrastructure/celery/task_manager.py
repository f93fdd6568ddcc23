from __future__ import annotations

import asyncio

from src.orchestrator.application.skill_registry import SkillRegistry
from src.orchestrator.domain.models.task import Task
from src.orchestrator.domain.repositories import TaskManagerRepository
from src.orchestrator.infrastructure.celery.task_registry import TaskRegistry


def build_message(task: Task) -> dict:
    """Worker message: everything the agent runtime needs to run one task."""
    return {
        "task_id": task.id,
        "skill_id": task.skill_id,
        "name": task.name,
        "description": task.description,
        "inputs": task.inputs,
        "validation_criteria": task.validation_criteria.model_dump(mode="json"),
        "retry_feedback": task.retry_feedback.model_dump(mode="json") if task.retry_feedback else None,
        "retry_count": task.retry_count,
        "timeout_seconds": task.timeout_seconds,
    }


class CeleryTaskManager(TaskManagerRepository):
    """
    Sends dispatched tasks to the Celery queue of their skill category.
    """

    def __init__(self, celery_app_instance, skills: SkillRegistry, routes: TaskRegistry | None = None):
        self._celery_app = celery_app_instance
        self._skills = skills
        self._registry = routes or TaskRegistry()

    async def enqueue(self, task: Task) -> str:
        """
        Enqueue a task and return the broker message id.
        """
        if task.id is None:
            raise ValueError("Task id is required to enqueue a task.")
        route = self._registry.route_for_category(self._skills.category_for(task.skill_id))
        async_result = await asyncio.to_thread(
            self._celery_app.send_task,
            route.celery_task,
            args=[build_message(task)],
            queue=route.queue,
        )
        return async_result.id
