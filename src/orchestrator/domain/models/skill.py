from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SkillCategory(str, Enum):
    PLANNER = "planner"
    DEVELOPMENT = "development"
    TESTING = "testing"
    CRITIQUE = "critique"
    METADATA = "metadata"
    DEPLOYMENT = "deployment"

    @property
    def allowed_in_graph(self) -> bool:
        # Planners seed the graph from outside; letting them run as tasks recurses.
        return self is not SkillCategory.PLANNER

    @property
    def can_trigger_retry(self) -> bool:
        return self is SkillCategory.CRITIQUE


class Skill(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Skill identifier.")
    category: SkillCategory = Field(description="Role category of the skill.")
    description: str = Field(default="", description="What the skill does.")
