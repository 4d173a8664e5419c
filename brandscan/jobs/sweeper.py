"""Stuck-run detector: periodic, lock-protected resumption of stalled runs."""

import logging
from datetime import timedelta
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from brandscan.config import settings
from brandscan.database import SessionLocal, utcnow
from brandscan.jobs.pipeline import PipelineDriver
from brandscan.models.result import AnalysisResult
from brandscan.models.run import TERMINAL_STATUSES, AnalysisRun
from brandscan.services.dispatcher import DispatchError
from brandscan.services.locks import LockService

logger = logging.getLogger(__name__)


class StuckRunDetector:
    """Finds running runs that stopped making progress and re-enters them into the pipeline."""

    def __init__(
        self,
        db: Session,
        pipeline: PipelineDriver,
        locks: LockService = None,
        stale_minutes: int = None,
        batch_size: int = None,
    ):
        self.db = db
        self.pipeline = pipeline
        self.locks = locks or LockService(db)
        self.stale_minutes = stale_minutes if stale_minutes is not None else settings.STALE_RUN_MINUTES
        self.batch_size = batch_size if batch_size is not None else settings.SWEEP_BATCH_SIZE

    def find_stale_runs(self) -> List[AnalysisRun]:
        cutoff = utcnow() - timedelta(minutes=self.stale_minutes)
        return (
            self.db.query(AnalysisRun)
            .filter(AnalysisRun.status == "running", AnalysisRun.started_at < cutoff)
            .order_by(AnalysisRun.started_at)
            .limit(self.batch_size)
            .all()
        )

    def sweep(self) -> int:
        """
        Resume stale runs while holding the sweep lock.

        Returns:
            Number of runs re-entered into the pipeline; 0 when another
            sweep holds the lock
        """
        lock_name = settings.SWEEP_LOCK_NAME
        holder_id = self.locks.acquire(lock_name, settings.SWEEP_LOCK_SECONDS)
        if not holder_id:
            logger.info("Another sweep is in flight, skipping")
            return 0

        processed = 0
        try:
            stale_runs = self.find_stale_runs()
            logger.info(f"Found {len(stale_runs)} stale run(s) older than {self.stale_minutes} minutes")

            for index, run in enumerate(stale_runs):
                if index > 0:
                    self.locks.extend(lock_name, holder_id, settings.SWEEP_LOCK_SECONDS)
                if self._resume(run):
                    processed += 1

            self.purge_expired_runs()
        finally:
            self.locks.release(lock_name, holder_id)

        logger.info(f"Sweep resumed {processed} run(s)")
        return processed

    def _resume(self, run: AnalysisRun) -> bool:
        run_id = run.run_id
        try:
            run.current_task = f"RESUMING: claimed by sweep at {utcnow().isoformat()}"
            run.updated_at = utcnow()
            self.db.commit()
            self.pipeline.resume(run)
            return True
        except DispatchError as e:
            logger.error(f"Could not dispatch resumption of run {run_id}, next sweep retries: {e}")
            return False
        except Exception as e:
            self.db.rollback()
            logger.error(f"Resumption of run {run_id} failed: {e}", exc_info=True)
            self.pipeline.fail(run_id, f"Resumption failed: {e}")
            return False

    def purge_expired_runs(self) -> int:
        """Delete terminal runs (with their units and results) past the retention window."""
        cutoff = utcnow() - timedelta(days=settings.RUN_RETENTION_DAYS)
        try:
            expired = (
                self.db.query(AnalysisRun)
                .filter(
                    AnalysisRun.status.in_(TERMINAL_STATUSES),
                    AnalysisRun.completed_at < cutoff,
                )
                .all()
            )
            if expired:
                self.db.query(AnalysisResult).filter(
                    AnalysisResult.run_id.in_([r.run_id for r in expired])
                ).delete(synchronize_session=False)
            for run in expired:
                self.db.delete(run)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Retention purge failed: {e}")
            return 0

        if expired:
            logger.info(f"Purged {len(expired)} run(s) completed before {cutoff.isoformat()}")
        return len(expired)


def main():
    """Entry point for running one sweep from a plain scheduler."""
    from brandscan.services.dispatcher import HttpDispatcher
    from brandscan.services.notifications import SendGridNotifier

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    db = SessionLocal()
    try:
        pipeline = PipelineDriver(db, HttpDispatcher(), SendGridNotifier())
        processed = StuckRunDetector(db, pipeline).sweep()
        logger.info(f"Processed {processed} stuck run(s)")
    finally:
        db.close()


if __name__ == "__main__":
    main()
