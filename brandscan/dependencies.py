"""FastAPI dependency providers wiring the orchestration components together."""

from fastapi import Depends
from sqlalchemy.orm import Session

from brandscan.database import get_db
from brandscan.jobs.pipeline import PipelineDriver
from brandscan.jobs.runner import TaskRunner
from brandscan.jobs.sweeper import StuckRunDetector
from brandscan.services.dispatcher import HttpDispatcher
from brandscan.services.notifications import SendGridNotifier
from brandscan.services.provider_client import AnalysisProviderClient


def get_dispatcher() -> HttpDispatcher:
    return HttpDispatcher()


def get_notifier() -> SendGridNotifier:
    return SendGridNotifier()


def get_provider() -> AnalysisProviderClient:
    return AnalysisProviderClient()


def get_pipeline(
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
    notifier=Depends(get_notifier),
) -> PipelineDriver:
    return PipelineDriver(db, dispatcher, notifier)


def get_runner(
    db: Session = Depends(get_db),
    provider=Depends(get_provider),
    pipeline: PipelineDriver = Depends(get_pipeline),
) -> TaskRunner:
    return TaskRunner(db, provider, pipeline)


def get_sweeper(
    db: Session = Depends(get_db),
    pipeline: PipelineDriver = Depends(get_pipeline),
) -> StuckRunDetector:
    return StuckRunDetector(db, pipeline)
