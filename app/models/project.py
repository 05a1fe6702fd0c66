"""Pydantic request models for the project API.

Field-level business rules (goal length, phase references, substep
numbers) are enforced by the core and surface as VALIDATION_ERROR.
"""

from pydantic import BaseModel, Field


class CreateProjectRequest(BaseModel):
    goal: str = Field(..., description="What the user wants to build")
    user_id: str | None = None
    expand_first_phase: bool = True


class UpdateProjectRequest(BaseModel):
    goal: str | None = None
    status: str | None = Field(
        default=None, description="active, paused or archived"
    )


class CompleteSubstepRequest(BaseModel):
    phase: int | str = Field(..., description="Phase number (0) or id ('P0')")
    substep: int


class AdvanceRequest(BaseModel):
    mode: str = Field(
        default="sequential", description="sequential, next_incomplete or phase"
    )


class ChatMessage(BaseModel):
    role: str
    content: str


class CompletionCheckRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
