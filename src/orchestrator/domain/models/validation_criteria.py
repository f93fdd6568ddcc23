from pydantic import BaseModel, Field


class ValidationCriteria(BaseModel):
    """Advisory criteria forwarded untouched to the executing agent."""

    critical: list[str] = Field(default_factory=list)
    expected: list[str] = Field(default_factory=list)
    nice_to_have: list[str] = Field(default_factory=list)
