"""Pipeline driver: sequences dispatch of work units and finalizes runs.

The driver is a trampoline over an explicit work list. After each unit the
task runner hands back the remaining pairs; the driver publishes the head
pair to the dispatch relay (never calling the runner directly) or, when the
list is empty, finalizes the run. It is the only writer of terminal run
statuses.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from brandscan.config import settings
from brandscan.database import utcnow
from brandscan.jobs.errors import (
    InvalidWorkListError,
    RunAlreadyRunningError,
    RunNotFoundError,
    RunNotRunningError,
)
from brandscan.models.result import AnalysisResult
from brandscan.models.run import AnalysisRun
from brandscan.models.work_unit import WorkUnit
from brandscan.services.dispatcher import DispatchError
from brandscan.services.notifications import NotificationError, completion_email, failure_email
from brandscan.services.provider_client import ALLOWED_MODELS, ALLOWED_STAGES
from brandscan.services.records import RecordNotFoundError, RecordProvider

logger = logging.getLogger(__name__)

Pair = Dict[str, str]


def make_pair(model: str, stage: str) -> Pair:
    return {"model": model, "stage": stage}


def _validate_selection(values: List[str], allowed: List[str], kind: str) -> List[str]:
    if not values:
        raise InvalidWorkListError(f"At least one {kind} is required")
    unknown = [v for v in values if v not in allowed]
    if unknown:
        raise InvalidWorkListError(f"Unknown {kind}(s): {', '.join(unknown)}")
    if len(set(values)) != len(values):
        raise InvalidWorkListError(f"Duplicate {kind}s in request")
    return list(values)


class PipelineDriver:
    """Decides what happens after a unit finishes: dispatch the next pair or finalize."""

    def __init__(self, db: Session, dispatcher, notifier, records: RecordProvider = None):
        self.db = db
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.records = records or RecordProvider(db)

    def _load(self, run_id: str) -> Optional[AnalysisRun]:
        return self.db.query(AnalysisRun).filter(AnalysisRun.run_id == run_id).first()

    def running_run_for_brand(self, brand_id: str) -> Optional[AnalysisRun]:
        return (
            self.db.query(AnalysisRun)
            .filter(AnalysisRun.brand_id == brand_id, AnalysisRun.status == "running")
            .order_by(AnalysisRun.started_at.desc())
            .first()
        )

    def incomplete_pairs(self, run: AnalysisRun) -> List[Pair]:
        """Pairs of the run not yet completed or failed, in work-list order."""
        units = (
            self.db.query(WorkUnit)
            .filter(
                WorkUnit.run_id == run.run_id,
                WorkUnit.status.in_(["pending", "running"]),
            )
            .order_by(WorkUnit.position)
            .all()
        )
        return [make_pair(u.model, u.stage) for u in units]

    def start(
        self,
        brand_id: str,
        user_id: str,
        models: Optional[List[str]] = None,
        stages: Optional[List[str]] = None,
    ) -> AnalysisRun:
        """
        Create a run with all its units pending and dispatch the first pair.

        Args:
            brand_id: Brand to analyze
            user_id: Initiating user (receives the notification)
            models: Models to run, all models when omitted
            stages: Stages to run, all stages when omitted

        Returns:
            The created run

        Raises:
            InvalidWorkListError: Unknown, duplicate or empty models/stages
            RecordNotFoundError: Unknown brand or user
            RunAlreadyRunningError: The brand already has a running run
        """
        if models is None:
            models = ALLOWED_MODELS
        if stages is None:
            stages = ALLOWED_STAGES
        models = _validate_selection(list(models), ALLOWED_MODELS, "model")
        stages = _validate_selection(list(stages), ALLOWED_STAGES, "stage")

        self.records.get_brand(brand_id)
        self.records.get_user(user_id)

        existing = self.running_run_for_brand(brand_id)
        if existing:
            raise RunAlreadyRunningError(brand_id, existing)

        pairs = [(model, stage) for model in models for stage in stages]
        run = AnalysisRun(
            brand_id=brand_id,
            user_id=user_id,
            models=models,
            stages=stages,
            status="running",
            total_tasks=len(pairs),
            completed_tasks=0,
            current_task="Initializing analysis...",
            started_at=utcnow(),
        )
        run.units = [
            WorkUnit(model=model, stage=stage, position=i, status="pending")
            for i, (model, stage) in enumerate(pairs)
        ]
        self.db.add(run)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a creation race against another request for the same brand
            self.db.rollback()
            raise RunAlreadyRunningError(brand_id, self.running_run_for_brand(brand_id))

        logger.info(f"Created run {run.run_id} for brand {brand_id} with {len(pairs)} pairs")

        self.advance(run.run_id, [make_pair(m, s) for m, s in pairs])
        return run

    def advance(self, run_id: str, remaining_pairs: List[Pair]) -> None:
        """Dispatch the head of ``remaining_pairs`` or finalize the run when empty."""
        run = self._load(run_id)
        if not run or run.status != "running":
            logger.info(f"Run {run_id} is not running, nothing to advance")
            return

        if not remaining_pairs:
            incomplete = self.incomplete_pairs(run)
            if incomplete:
                logger.warning(
                    f"Run {run_id} reached the end of its work list with {len(incomplete)} "
                    f"incomplete pair(s), re-dispatching"
                )
                remaining_pairs = incomplete
            else:
                self.finalize(run)
                return

        head, tail = remaining_pairs[0], list(remaining_pairs[1:])
        try:
            self.dispatcher.publish_pair(run_id, head, tail)
        except DispatchError as e:
            # The stuck-run sweep picks the run up again
            logger.error(f"Could not dispatch {head['model']}-{head['stage']} for run {run_id}: {e}")
            return

        logger.info(f"Dispatched {head['model']}-{head['stage']} for run {run_id} ({len(tail)} left after it)")

    def resume(self, run: AnalysisRun) -> Optional[Pair]:
        """
        Re-enter a running run from its first incomplete pair.

        Returns:
            The dispatched pair, or None when the run had nothing left and was finalized

        Raises:
            DispatchError: If the relay could not take the message
        """
        incomplete = self.incomplete_pairs(run)
        if not incomplete:
            self.finalize(run)
            return None

        head, tail = incomplete[0], incomplete[1:]
        self.dispatcher.publish_pair(run.run_id, head, tail)
        logger.info(f"Resumed run {run.run_id} at {head['model']}-{head['stage']}")
        return head

    def schedule_resume(self, run_id: str) -> str:
        """
        Ask the relay to deliver a resume request for a running run.

        Returns:
            Relay message id

        Raises:
            RunNotFoundError: Unknown run
            RunNotRunningError: The run is already terminal
            DispatchError: If the relay could not take the message
        """
        run = self._load(run_id)
        if not run:
            raise RunNotFoundError(f"Run {run_id} not found")
        if run.status != "running":
            raise RunNotRunningError(f"Run {run_id} is already {run.status}")

        message_id = self.dispatcher.publish_resume(run_id)
        logger.info(f"Scheduled resumption of run {run_id} ({message_id})")
        return message_id

    def _transition(self, run_id: str, values: dict) -> bool:
        """Move a running run to a terminal state; only one caller can win."""
        values.setdefault(AnalysisRun.updated_at, utcnow())
        updated = (
            self.db.query(AnalysisRun)
            .filter(AnalysisRun.run_id == run_id, AnalysisRun.status == "running")
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return bool(updated)

    def summarize(self, run: AnalysisRun) -> dict:
        results = self.db.query(AnalysisResult).filter(AnalysisResult.run_id == run.run_id).all()
        total = len(results)
        average_score = sum(r.overall_score for r in results) / total if total else 0.0
        average_weighted = sum(r.weighted_score for r in results) / total if total else 0.0
        finished_at = run.completed_at or utcnow()
        return {
            "total_analyses": total,
            "average_score": round(average_score, 2),
            "average_weighted_score": round(average_weighted, 2),
            "completion_time_ms": int((finished_at - run.started_at).total_seconds() * 1000),
        }

    def finalize(self, run: AnalysisRun) -> bool:
        """Mark the run completed exactly once and notify the initiating user."""
        now = utcnow()
        won = self._transition(
            run.run_id,
            {
                AnalysisRun.status: "completed",
                AnalysisRun.completed_at: now,
                AnalysisRun.current_task: "Analysis completed successfully!",
            },
        )
        if not won:
            logger.info(f"Run {run.run_id} was already finalized")
            return False

        self.db.refresh(run)
        summary = self.summarize(run)
        logger.info(
            f"Run {run.run_id} completed: {summary['total_analyses']} results, "
            f"average score {summary['average_score']}"
        )
        self._notify_completion(run, summary)
        return True

    def fail(self, run_id: str, error_message: str) -> bool:
        """Mark the run failed with a human-readable message and notify the user."""
        won = self._transition(
            run_id,
            {
                AnalysisRun.status: "failed",
                AnalysisRun.completed_at: utcnow(),
                AnalysisRun.error_message: error_message,
                AnalysisRun.current_task: "Analysis failed",
            },
        )
        if not won:
            logger.info(f"Run {run_id} is not running, failure not recorded: {error_message}")
            return False

        logger.error(f"Run {run_id} failed: {error_message}")
        run = self._load(run_id)
        self._notify_failure(run, error_message)
        return True

    def cancel(self, run_id: str) -> AnalysisRun:
        run = self._load(run_id)
        if not run:
            raise RunNotFoundError(f"Run {run_id} not found")

        won = self._transition(
            run_id,
            {
                AnalysisRun.status: "cancelled",
                AnalysisRun.completed_at: utcnow(),
                AnalysisRun.current_task: "Analysis cancelled",
            },
        )
        if not won:
            raise RunNotRunningError(f"Run {run_id} is already {run.status}")

        logger.info(f"Run {run_id} cancelled")
        self.db.refresh(run)
        return run

    def _dashboard_link(self, run: AnalysisRun) -> str:
        return f"{settings.BASE_URL.rstrip('/')}/{run.user_id}/brands/{run.brand_id}/dashboard"

    def _notify_completion(self, run: AnalysisRun, summary: dict) -> None:
        try:
            brand = self.records.get_brand(run.brand_id)
            user = self.records.get_user(run.user_id)
            body = completion_email(brand.name, self._dashboard_link(run), summary)
            self.notifier.send(user.email, f"Analysis Complete - {brand.name}", body)
        except (RecordNotFoundError, NotificationError) as e:
            logger.error(f"Completion notification for run {run.run_id} not sent: {e}")

    def _notify_failure(self, run: AnalysisRun, error_message: str) -> None:
        try:
            brand = self.records.get_brand(run.brand_id)
            user = self.records.get_user(run.user_id)
            self.notifier.send(user.email, f"Analysis Failed - {brand.name}", failure_email(brand.name, error_message))
        except (RecordNotFoundError, NotificationError) as e:
            logger.error(f"Failure notification for run {run.run_id} not sent: {e}")
