from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class RetryFeedback(BaseModel):
    """Feedback injected into a task when a critique sends it back for rebuild."""

    summary: str = Field(default="", description="Critique summary.")
    issues: list[Any] = Field(default_factory=list, description="Issues found by the critique.")
    suggestion: str | None = Field(default=None, description="Suggested fix for the rebuild.")
    critique_task_id: str | None = Field(
        default=None, description="Critique task that produced the feedback."
    )
    attempt: int = Field(default=1, description="Retry attempt this feedback triggered.")
    created_at: datetime | None = Field(default=None, description="When the feedback was recorded.")
