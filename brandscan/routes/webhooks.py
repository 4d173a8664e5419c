"""Webhook routes called back by the dispatch relay and the scheduler."""

import hmac
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from brandscan.config import settings
from brandscan.database import get_db
from brandscan.dependencies import get_pipeline, get_runner, get_sweeper
from brandscan.jobs.pipeline import PipelineDriver
from brandscan.jobs.runner import TaskRunner
from brandscan.jobs.sweeper import StuckRunDetector
from brandscan.models.run import AnalysisRun
from brandscan.schemas.dispatch import ProcessAnalysisPayload, ResumeAnalysisPayload, WebhookResponse
from brandscan.schemas.run import SweepResponse
from brandscan.services.dispatcher import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
cron_router = APIRouter(prefix="/cron", tags=["cron"])


async def verified_body(
    request: Request,
    upstash_signature: Optional[str] = Header(None),
) -> bytes:
    """Raw request body, after checking the relay signature."""
    body = await request.body()
    url = f"{settings.BASE_URL.rstrip('/')}{request.url.path}"
    if not verify_signature(body, upstash_signature, url):
        logger.warning(f"Rejected delivery to {request.url.path}: bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    return body


def _parse(model, raw_body: bytes):
    try:
        return model.model_validate_json(raw_body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Malformed payload: {e.error_count()} error(s)")


@router.post("/process-analysis", response_model=WebhookResponse)
def process_analysis(
    raw_body: bytes = Depends(verified_body),
    runner: TaskRunner = Depends(get_runner),
):
    """Run one dispatched pair; answers once the runner has handed off."""
    payload = _parse(ProcessAnalysisPayload, raw_body)
    pair = payload.current_pair.model_dump()
    remaining = [p.model_dump() for p in payload.remaining_pairs]

    outcome = runner.run(payload.run_id, pair, remaining)

    return WebhookResponse(
        success=True,
        message=f"Processed {pair['model']}-{pair['stage']}",
        run_id=payload.run_id,
        outcome=outcome,
    )


@router.post("/resume-analysis", response_model=WebhookResponse)
def resume_analysis(
    raw_body: bytes = Depends(verified_body),
    db: Session = Depends(get_db),
    runner: TaskRunner = Depends(get_runner),
    pipeline: PipelineDriver = Depends(get_pipeline),
):
    """Resume a run from its first incomplete pair."""
    payload = _parse(ResumeAnalysisPayload, raw_body)

    run = (
        db.query(AnalysisRun)
        .filter(AnalysisRun.run_id == payload.run_id, AnalysisRun.status == "running")
        .first()
    )
    if not run:
        logger.info(f"Run {payload.run_id} not found or not running, nothing to resume")
        return WebhookResponse(
            success=True,
            message="Run not found or not running",
            run_id=payload.run_id,
        )

    pairs = pipeline.incomplete_pairs(run)
    if not pairs:
        pipeline.advance(run.run_id, [])
        return WebhookResponse(success=True, message="Nothing left to run", run_id=payload.run_id)

    outcome = runner.run(run.run_id, pairs[0], pairs[1:])
    return WebhookResponse(
        success=True,
        message=f"Resumed at {pairs[0]['model']}-{pairs[0]['stage']}",
        run_id=payload.run_id,
        outcome=outcome,
    )


def _check_cron_token(authorization: Optional[str]) -> None:
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET not configured; rejecting sweep trigger")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(authorization or "", f"Bearer {settings.CRON_SECRET}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@cron_router.api_route("/check-stuck-analyses", methods=["GET", "POST"], response_model=SweepResponse)
def check_stuck_analyses(
    authorization: Optional[str] = Header(None),
    sweeper: StuckRunDetector = Depends(get_sweeper),
):
    """Scheduled sweep over stale runs."""
    _check_cron_token(authorization)

    started = time.monotonic()
    processed = sweeper.sweep()
    elapsed_ms = int((time.monotonic() - started) * 1000)

    logger.info(f"Stuck run check processed {processed} run(s) in {elapsed_ms}ms")
    return SweepResponse(processed=processed, executionTimeMs=elapsed_ms)
