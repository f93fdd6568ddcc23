from __future__ import annotations

import logging
from typing import Any, NoReturn

import inject
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.orchestrator.application.correctness_loop import LoopAction
from src.orchestrator.application.services import TaskService
from src.orchestrator.application.skill_registry import SkillRegistry
from src.orchestrator.domain.exceptions import (
    BatchValidationError,
    ConcurrentModificationError,
    InvalidTransition,
    RetryError,
    TaskNotFoundError,
)
from src.orchestrator.domain.models import Skill, Task, TaskSpec, TaskState

router = APIRouter(tags=["tasks"])
logger = logging.getLogger(__name__)


def get_task_service() -> TaskService:
    return inject.instance(TaskService)


def get_skill_registry() -> SkillRegistry:
    return inject.instance(SkillRegistry)


class BatchRequest(BaseModel):
    tasks: list[TaskSpec] = Field(..., min_length=1, description="Task specs of one batch.")


class BatchResponse(BaseModel):
    tasks: dict[int, str] = Field(description="Created task ids keyed by uniqueId.")


class CompleteRequest(BaseModel):
    result: Any = Field(default=None, description="Task result; critiques carry their verdict here.")


class FailRequest(BaseModel):
    reason: str = Field(..., description="Why the worker could not finish the task.")


class CancelRequest(BaseModel):
    reason: str | None = None


class CompletionResponse(BaseModel):
    task: Task
    loop_action: LoopAction | None = None
    released: list[str] = Field(default_factory=list)
    retried: list[str] = Field(default_factory=list)


class CancelResponse(BaseModel):
    cancelled: list[str]


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, BatchValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict()) from exc
    if isinstance(exc, TaskNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, InvalidTransition):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "invalid_transition", "state": exc.actual.value, "message": str(exc)},
        ) from exc
    if isinstance(exc, RetryError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": exc.kind.value, "task_ids": exc.task_ids, "message": str(exc)},
        ) from exc
    if isinstance(exc, ConcurrentModificationError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "concurrent_modification", "task_ids": exc.missing_ids},
        ) from exc
    raise exc


_HANDLED = (
    BatchValidationError,
    TaskNotFoundError,
    InvalidTransition,
    RetryError,
    ConcurrentModificationError,
)


@router.post(
    "/tasks/batch",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a batch of tasks",
    description=(
        "Validates logicalDependencies between uniqueIds of the batch and creates every "
        "task atomically. Circular or missing references return 400 naming the uniqueIds."
    ),
)
async def create_batch(body: BatchRequest, service: TaskService = Depends(get_task_service)):
    try:
        created = await service.create_batch(body.tasks)
    except _HANDLED as exc:
        _raise_http(exc)
    return BatchResponse(tasks=created)


@router.post("/tasks", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_task(spec: TaskSpec, service: TaskService = Depends(get_task_service)):
    try:
        return await service.create_task(spec)
    except _HANDLED as exc:
        _raise_http(exc)


@router.post("/tasks/{task_id}/subtasks", response_model=Task, status_code=status.HTTP_201_CREATED)
async def create_subtask(
    task_id: str, spec: TaskSpec, service: TaskService = Depends(get_task_service)
):
    try:
        return await service.create_subtask(task_id, spec)
    except _HANDLED as exc:
        _raise_http(exc)


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(task_id: str, service: TaskService = Depends(get_task_service)):
    try:
        return await service.get_task(task_id)
    except _HANDLED as exc:
        _raise_http(exc)


@router.get("/tasks", response_model=list[Task])
async def list_tasks(
    state: TaskState | None = Query(default=None),
    parent_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: TaskService = Depends(get_task_service),
):
    return await service.list_tasks(state=state, parent_id=parent_id, limit=limit, offset=offset)


@router.post("/tasks/{task_id}/cancel", response_model=CancelResponse)
async def cancel_task(
    task_id: str,
    body: CancelRequest | None = None,
    service: TaskService = Depends(get_task_service),
):
    try:
        cancelled = await service.cancel_task(task_id, body.reason if body else None)
    except _HANDLED as exc:
        _raise_http(exc)
    return CancelResponse(cancelled=[task.id for task in cancelled])


@router.post("/tasks/{task_id}/retry", response_model=Task)
async def retry_task(task_id: str, service: TaskService = Depends(get_task_service)):
    try:
        return await service.retry_task(task_id)
    except _HANDLED as exc:
        _raise_http(exc)


@router.post("/tasks/{task_id}/complete", response_model=CompletionResponse)
async def complete_task(
    task_id: str, body: CompleteRequest, service: TaskService = Depends(get_task_service)
):
    try:
        outcome = await service.complete_task(task_id, body.result)
    except _HANDLED as exc:
        _raise_http(exc)
    return CompletionResponse(
        task=outcome.task,
        loop_action=outcome.loop.action if outcome.loop else None,
        released=[task.id for task in outcome.released],
        retried=[task.id for task in outcome.loop.targets] if outcome.loop else [],
    )


@router.post("/tasks/{task_id}/fail", response_model=Task)
async def fail_task(task_id: str, body: FailRequest, service: TaskService = Depends(get_task_service)):
    try:
        return await service.fail_task(task_id, body.reason)
    except _HANDLED as exc:
        _raise_http(exc)


@router.get("/skills", response_model=list[Skill], tags=["skills"])
async def list_skills(registry: SkillRegistry = Depends(get_skill_registry)):
    return registry.all()


@router.post("/skills/reload", tags=["skills"])
async def reload_skills(registry: SkillRegistry = Depends(get_skill_registry)):
    count = registry.reload()
    logger.info("Skills reloaded via API", extra={"skills": count})
    return {"skills": count}
