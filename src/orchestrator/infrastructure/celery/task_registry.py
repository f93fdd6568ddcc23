from dataclasses import dataclass

from src.orchestrator.domain.models.skill import SkillCategory

RUN_SKILL_TASK = "run_skill"


@dataclass(frozen=True)
class TaskRoute:
    category: SkillCategory
    celery_task: str
    queue: str | None = None


class TaskRegistry:
    """Registry mapping skill categories to Celery routing info."""

    def __init__(self, queues: dict[str, str] | None = None) -> None:
        queues = queues or {}
        self._registry: dict[SkillCategory, TaskRoute] = {
            category: TaskRoute(
                category=category,
                celery_task=RUN_SKILL_TASK,
                queue=queues.get(category.value),
            )
            for category in SkillCategory
            if category.allowed_in_graph
        }

    def route_for_category(self, category: SkillCategory) -> TaskRoute:
        try:
            return self._registry[category]
        except KeyError as exc:
            raise ValueError(f"No task route registered for skill category {category.value!r}") from exc
