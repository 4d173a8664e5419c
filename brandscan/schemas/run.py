"""Run-related Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class RunCreate(BaseModel):
    """Schema for starting a new analysis run."""

    user_id: str
    models: Optional[List[str]] = None  # Defaults to all models
    stages: Optional[List[str]] = None  # Defaults to all stages


class Progress(BaseModel):
    total_tasks: int
    completed_tasks: int
    current_task: Optional[str] = None


class WorkUnitResponse(BaseModel):
    """One (model, stage) pair of a run."""

    model_config = ConfigDict(from_attributes=True)

    model: str
    stage: str
    position: int
    status: str
    attempts: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class RunSummary(BaseModel):
    """Run status as shown in the status query."""

    run_id: str
    brand_id: str
    user_id: str
    status: str
    models: List[str]
    stages: List[str]
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    progress: Progress

    @classmethod
    def from_run(cls, run) -> "RunSummary":
        return cls(
            run_id=run.run_id,
            brand_id=run.brand_id,
            user_id=run.user_id,
            status=run.status,
            models=run.models,
            stages=run.stages,
            started_at=run.started_at,
            completed_at=run.completed_at,
            error_message=run.error_message,
            progress=Progress(
                total_tasks=run.total_tasks,
                completed_tasks=run.completed_tasks,
                current_task=run.current_task,
            ),
        )


class RunDetail(RunSummary):
    """Run status with its work units."""

    units: List[WorkUnitResponse]


class RunStartResponse(BaseModel):
    """Response after starting a run."""

    run_id: str
    status: str
    total_tasks: int
    message: str


class AnalysisStatusResponse(BaseModel):
    """Polling view of a brand's analyses."""

    isRunning: bool
    currentRun: Optional[RunSummary] = None
    recentRuns: List[RunSummary]


class SweepResponse(BaseModel):
    processed: int
    executionTimeMs: int
