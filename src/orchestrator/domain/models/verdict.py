from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class VerdictOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class Verdict(BaseModel):
    """Result emitted by a critique task."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    verdict: VerdictOutcome = Field(description="pass or fail.")
    summary: str = Field(default="", description="Short verdict summary.")
    issues: list[Any] = Field(default_factory=list, description="Issues found.")
    feedback_for_rebuild: str | None = Field(
        default=None,
        alias="feedbackForRebuild",
        description="Instructions handed to the task being rebuilt.",
    )

    @property
    def passed(self) -> bool:
        return self.verdict == VerdictOutcome.PASS

    @classmethod
    def from_result(cls, result: Any) -> "Verdict | None":
        """Extract a verdict from a task result payload, or ``None`` if there is none."""
        if not isinstance(result, dict):
            return None
        candidate = result
        nested = result.get("verdict")
        if isinstance(nested, dict):
            candidate = nested
        elif isinstance(nested, str):
            candidate = {**result, "verdict": nested.lower()}
        try:
            return cls.model_validate(candidate)
        except ValidationError:
            return None
