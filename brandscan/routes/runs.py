"""Run routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from brandscan.config import settings
from brandscan.database import get_db
from brandscan.dependencies import get_pipeline
from brandscan.jobs.errors import (
    InvalidWorkListError,
    RunAlreadyRunningError,
    RunNotFoundError,
    RunNotRunningError,
)
from brandscan.jobs.pipeline import PipelineDriver
from brandscan.models.run import AnalysisRun
from brandscan.schemas.run import (
    AnalysisStatusResponse,
    RunCreate,
    RunDetail,
    RunStartResponse,
    RunSummary,
    WorkUnitResponse,
)
from brandscan.services.dispatcher import DispatchError
from brandscan.services.records import RecordNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runs"])


@router.post("/brands/{brand_id}/analyses", response_model=RunStartResponse)
def start_analysis(
    brand_id: str,
    data: RunCreate,
    pipeline: PipelineDriver = Depends(get_pipeline),
):
    """Start an analysis run for a brand and dispatch its first pair."""
    try:
        run = pipeline.start(brand_id, data.user_id, data.models, data.stages)
    except InvalidWorkListError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RunAlreadyRunningError as e:
        content = {"detail": "Analysis is already running for this brand"}
        if e.run is not None:
            content["current_run"] = RunSummary.from_run(e.run).model_dump(mode="json")
        return JSONResponse(status_code=409, content=content)

    logger.info(f"Started run {run.run_id} for brand {brand_id}")

    return RunStartResponse(
        run_id=run.run_id,
        status=run.status,
        total_tasks=run.total_tasks,
        message="Analysis started, you will receive an email once it is complete",
    )


@router.get("/brands/{brand_id}/analysis-status", response_model=AnalysisStatusResponse)
def get_analysis_status(
    brand_id: str,
    db: Session = Depends(get_db),
):
    """Current and recent runs for a brand, read from durable state."""
    current = (
        db.query(AnalysisRun)
        .filter(AnalysisRun.brand_id == brand_id, AnalysisRun.status == "running")
        .order_by(AnalysisRun.started_at.desc())
        .first()
    )
    recent = (
        db.query(AnalysisRun)
        .filter(AnalysisRun.brand_id == brand_id)
        .order_by(AnalysisRun.started_at.desc())
        .limit(settings.RECENT_RUNS_LIMIT)
        .all()
    )

    return AnalysisStatusResponse(
        isRunning=current is not None,
        currentRun=RunSummary.from_run(current) if current else None,
        recentRuns=[RunSummary.from_run(r) for r in recent],
    )


@router.get("/runs/{run_id}", response_model=RunDetail)
def get_run(
    run_id: str,
    db: Session = Depends(get_db),
):
    """Get run status and its work units."""
    run = db.query(AnalysisRun).filter(AnalysisRun.run_id == run_id).first()
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")

    summary = RunSummary.from_run(run)
    return RunDetail(
        **summary.model_dump(),
        units=[WorkUnitResponse.model_validate(u) for u in run.units],
    )


@router.post("/runs/{run_id}/cancel", response_model=RunSummary)
def cancel_run(
    run_id: str,
    pipeline: PipelineDriver = Depends(get_pipeline),
):
    """Cancel a running run; in-flight pairs stop at their next status check."""
    try:
        run = pipeline.cancel(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except RunNotRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return RunSummary.from_run(run)


@router.post("/runs/{run_id}/resume", status_code=202)
def resume_run(
    run_id: str,
    pipeline: PipelineDriver = Depends(get_pipeline),
):
    """Schedule resumption of a running run through the dispatch relay."""
    try:
        message_id = pipeline.schedule_resume(run_id)
    except RunNotFoundError:
        raise HTTPException(status_code=404, detail="Run not found")
    except RunNotRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DispatchError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {"run_id": run_id, "message_id": message_id}
