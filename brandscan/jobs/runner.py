"""Task runner: executes one (model, stage) pair of a run."""

import logging
from datetime import timedelta
from typing import List

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from brandscan.config import settings
from brandscan.database import utcnow
from brandscan.jobs.pipeline import Pair, PipelineDriver
from brandscan.models.result import AnalysisResult
from brandscan.models.run import AnalysisRun
from brandscan.models.work_unit import WorkUnit
from brandscan.services.records import RecordNotFoundError, RecordProvider
from brandscan.services.validators import sanitize_analysis_result

logger = logging.getLogger(__name__)

# Outcomes of a single invocation
SKIPPED = "skipped"  # run missing, terminal, or pair not part of the run
DUPLICATE = "duplicate"  # unit already completed/failed by an earlier delivery
IN_PROGRESS = "in_progress"  # unit claimed by a live invocation
COMPLETED = "completed"
FAILED = "failed"
RUN_FAILED = "run_failed"


class TaskRunner:
    """Runs one pair against the provider, persists the outcome and hands off.

    Safe under at-least-once delivery: a unit that is already completed or
    failed is never processed again, and a unit is only claimed when it is
    pending or its previous claim has outlived the lease.
    """

    def __init__(
        self,
        db: Session,
        provider,
        pipeline: PipelineDriver,
        records: RecordProvider = None,
        lease_seconds: int = None,
    ):
        """Initialize runner."""
        self.db = db
        self.provider = provider
        self.pipeline = pipeline
        self.records = records or RecordProvider(db)
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.PAIR_LEASE_SECONDS

    def run(self, run_id: str, pair: Pair, remaining_pairs: List[Pair]) -> str:
        """
        Execute ``pair`` for ``run_id`` and hand ``remaining_pairs`` to the pipeline.

        Args:
            run_id: Run identifier
            pair: {"model": ..., "stage": ...} to execute
            remaining_pairs: Pairs still to run after this one, in order

        Returns:
            Outcome constant (COMPLETED, FAILED, DUPLICATE, ...)
        """
        model, stage = pair["model"], pair["stage"]
        logger.info(f"Running {model}-{stage} for run {run_id}")

        run = None
        try:
            run = self.db.query(AnalysisRun).filter(AnalysisRun.run_id == run_id).first()
            if not run:
                logger.info(f"Run {run_id} not found, skipping")
                return SKIPPED
            if run.status != "running":
                logger.info(f"Run {run_id} is {run.status}, skipping {model}-{stage}")
                return SKIPPED

            unit = (
                self.db.query(WorkUnit)
                .filter(WorkUnit.run_id == run_id, WorkUnit.model == model, WorkUnit.stage == stage)
                .first()
            )
            if not unit:
                logger.error(f"Pair {model}-{stage} is not part of run {run_id}, skipping")
                return SKIPPED
            if unit.is_done:
                logger.info(f"Pair {model}-{stage} of run {run_id} already {unit.status}, ignoring duplicate delivery")
                return DUPLICATE

            brand = self.records.get_brand(run.brand_id)
            self.records.get_user(run.user_id)

            if not self._claim(run, unit):
                logger.info(f"Pair {model}-{stage} of run {run_id} is being processed by another invocation")
                return IN_PROGRESS

        except RecordNotFoundError as e:
            self.pipeline.fail(run_id, str(e))
            return RUN_FAILED
        except SQLAlchemyError as e:
            self.db.rollback()
            if run is None or self._has_progress(run_id):
                # Mid-run: leave the pair for redelivery
                logger.error(f"Storage error before {model}-{stage} of run {run_id} could run, awaiting redelivery: {e}")
                raise
            logger.error(f"Storage error before {model}-{stage} of run {run_id} could run: {e}", exc_info=True)
            self.pipeline.fail(run_id, f"Storage error before the analysis could run: {e}")
            return RUN_FAILED

        outcome = self._execute(run, unit, brand)
        if outcome in (COMPLETED, FAILED):
            self.pipeline.advance(run_id, remaining_pairs)
        return outcome

    def _has_progress(self, run_id: str) -> bool:
        """True once any unit of the run has been claimed or finished."""
        started = (
            self.db.query(WorkUnit)
            .filter(
                WorkUnit.run_id == run_id,
                or_(WorkUnit.status != "pending", WorkUnit.attempts > 0),
            )
            .first()
        )
        if started is not None:
            return True
        run = self.db.query(AnalysisRun).filter(AnalysisRun.run_id == run_id).first()
        return run is not None and run.completed_tasks > 0

    def _claim(self, run: AnalysisRun, unit: WorkUnit) -> bool:
        """Atomically move the unit to running if it is pending or its lease expired."""
        now = utcnow()
        lease_cutoff = now - timedelta(seconds=self.lease_seconds)
        claimed = (
            self.db.query(WorkUnit)
            .filter(
                WorkUnit.unit_id == unit.unit_id,
                or_(
                    WorkUnit.status == "pending",
                    and_(
                        WorkUnit.status == "running",
                        or_(WorkUnit.started_at.is_(None), WorkUnit.started_at < lease_cutoff),
                    ),
                ),
            )
            .update(
                {
                    WorkUnit.status: "running",
                    WorkUnit.started_at: now,
                    WorkUnit.attempts: WorkUnit.attempts + 1,
                    WorkUnit.error_message: None,
                    WorkUnit.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if claimed:
            self.db.query(AnalysisRun).filter(
                AnalysisRun.run_id == run.run_id,
                AnalysisRun.status == "running",
            ).update(
                {
                    AnalysisRun.current_task: f"Analyzing {unit.model} - {unit.stage}...",
                    AnalysisRun.updated_at: now,
                },
                synchronize_session=False,
            )
        self.db.commit()
        return bool(claimed)

    def _execute(self, run: AnalysisRun, unit: WorkUnit, brand) -> str:
        model, stage = unit.model, unit.stage
        try:
            raw = self.provider.analyze(brand, model, stage)
            data = sanitize_analysis_result(raw)
        except Exception as e:
            logger.error(f"Pair {model}-{stage} of run {run.run_id} failed: {e}", exc_info=True)
            self._record_failure(run, unit, str(e) or e.__class__.__name__)
            return FAILED

        result = AnalysisResult(
            run_id=run.run_id,
            brand_id=run.brand_id,
            user_id=run.user_id,
            model=model,
            stage=stage,
            overall_score=data["overall_score"],
            weighted_score=data["weighted_score"],
            success_rate=data["success_rate"],
            total_response_time=data["total_response_time"],
            aggregated_sentiment=data["aggregated_sentiment"],
            prompt_results=data["prompt_results"],
            raw_response=raw,
            status=data["status"],
            trigger_type="manual",
        )
        self.db.add(result)
        unit.status = "completed"
        unit.completed_at = utcnow()
        unit.error_message = None
        try:
            self._update_progress(run, unit, "Completed")
            self.db.commit()
        except IntegrityError:
            # Another delivery stored this pair's result first
            self.db.rollback()
            logger.warning(f"Result for {model}-{stage} of run {run.run_id} already stored, ignoring duplicate")
            return DUPLICATE

        logger.info(f"Completed {model}-{stage} for run {run.run_id}")
        return COMPLETED

    def _record_failure(self, run: AnalysisRun, unit: WorkUnit, error_message: str) -> None:
        self.db.rollback()
        unit.status = "failed"
        unit.completed_at = utcnow()
        unit.error_message = error_message
        self._update_progress(run, unit, "Error in")
        self.db.commit()

    def _update_progress(self, run: AnalysisRun, unit: WorkUnit, verb: str) -> None:
        """
        Count the unit toward progress, whether it succeeded or failed.

        Progress is the number of finished units, so a redelivered pair can
        never increment it twice and it never exceeds total_tasks.
        """
        self.db.flush()
        self.db.refresh(run)
        if run.status != "running":
            return

        finished = (
            self.db.query(WorkUnit)
            .filter(WorkUnit.run_id == run.run_id, WorkUnit.status.in_(["completed", "failed"]))
            .count()
        )
        run.completed_tasks = max(run.completed_tasks, min(finished, run.total_tasks))
        run.current_task = f"{verb} {unit.label} ({run.completed_tasks}/{run.total_tasks})"
        run.updated_at = utcnow()
