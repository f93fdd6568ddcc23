from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

import yaml

from src.orchestrator.domain.exceptions import UnknownSkillError
from src.orchestrator.domain.models.skill import Skill, SkillCategory

logger = logging.getLogger(__name__)

DEFAULT_SKILLS: tuple[Skill, ...] = (
    Skill(id="planner", category=SkillCategory.PLANNER, description="Breaks a request into tasks."),
    Skill(
        id="frontend-development",
        category=SkillCategory.DEVELOPMENT,
        description="Builds frontend features.",
    ),
    Skill(
        id="backend-development",
        category=SkillCategory.DEVELOPMENT,
        description="Builds backend features.",
    ),
    Skill(id="testing", category=SkillCategory.TESTING, description="Writes and runs tests."),
    Skill(id="critique", category=SkillCategory.CRITIQUE, description="Reviews a preceding task."),
    Skill(id="qa", category=SkillCategory.CRITIQUE, description="Validates a build end to end."),
    Skill(id="deployment", category=SkillCategory.DEPLOYMENT, description="Deploys a service."),
    Skill(id="metadata", category=SkillCategory.METADATA, description="Generates metadata."),
)


def load_skills_file(path: Path) -> list[Skill]:
    """
    Parse a YAML skill catalogue.

    The file holds a ``skills`` list of ``{id, category, description}`` mappings.
    """
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    entries = raw.get("skills", []) if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ValueError(f"Skill file {path} must contain a list of skills")
    return [Skill.model_validate(entry) for entry in entries]


class SkillRegistry:
    """Immutable skill lookup that can be swapped wholesale by ``reload``."""

    def __init__(
        self,
        skills: Iterable[Skill] | None = None,
        *,
        skills_file: Path | None = None,
    ) -> None:
        self._skills_file = skills_file
        self._defaults = tuple(skills) if skills is not None else DEFAULT_SKILLS
        self._lock = threading.Lock()
        self._skills: Mapping[str, Skill] = self._build()

    def _build(self) -> Mapping[str, Skill]:
        skills = self._defaults
        if self._skills_file is not None:
            skills = tuple(load_skills_file(self._skills_file))
        return MappingProxyType({skill.id: skill for skill in skills})

    def reload(self) -> int:
        """Re-read the skill source and replace the mapping. Returns the skill count."""
        with self._lock:
            skills = self._build()
            self._skills = skills
        logger.info(
            "Skill registry reloaded",
            extra={"skills": len(skills), "source": str(self._skills_file or "defaults")},
        )
        return len(skills)

    def get(self, skill_id: str) -> Skill:
        try:
            return self._skills[skill_id]
        except KeyError as exc:
            raise UnknownSkillError(skill_id) from exc

    def find(self, skill_id: str) -> Skill | None:
        return self._skills.get(skill_id)

    def category_for(self, skill_id: str) -> SkillCategory:
        return self.get(skill_id).category

    def all(self) -> list[Skill]:
        return sorted(self._skills.values(), key=lambda skill: skill.id)

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._skills
