"""Tests for the stuck-run detector."""

from datetime import timedelta

from brandscan.config import settings
from brandscan.database import utcnow
from brandscan.jobs.sweeper import StuckRunDetector
from brandscan.models.records import Brand
from brandscan.models.result import AnalysisResult
from brandscan.models.run import AnalysisRun
from brandscan.models.work_unit import WorkUnit
from brandscan.services.locks import LockService


def _age(db, run, minutes):
    run.started_at = utcnow() - timedelta(minutes=minutes)
    db.commit()


def test_stale_run_resumes_from_first_incomplete_pair(test_db, brand, pipeline, dispatcher, deliver):
    """Test a run whose hand-off was lost is re-dispatched at the right pair."""
    run = pipeline.start("brand-1", "user-1", ["ChatGPT", "Claude"], ["TOFU"])
    deliver(1)
    dispatcher.messages.clear()  # hand-off lost
    _age(test_db, run, 15)

    processed = StuckRunDetector(test_db, pipeline, stale_minutes=10).sweep()

    assert processed == 1
    assert dispatcher.messages == [
        {"run_id": run.run_id, "current_pair": {"model": "Claude", "stage": "TOFU"}, "remaining_pairs": []}
    ]
    test_db.refresh(run)
    assert run.status == "running"
    assert run.current_task.startswith("RESUMING: claimed by sweep at")
    assert not LockService(test_db).check(settings.SWEEP_LOCK_NAME).held


def test_fresh_run_is_left_alone(test_db, brand, pipeline, dispatcher):
    pipeline.start("brand-1", "user-1", ["ChatGPT"], ["TOFU"])
    dispatcher.messages.clear()

    assert StuckRunDetector(test_db, pipeline, stale_minutes=10).sweep() == 0
    assert dispatcher.messages == []


def test_sweep_skips_when_lock_held(test_db, brand, pipeline, dispatcher):
    """Test a concurrent sweep does nothing while another holds the lock."""
    run = pipeline.start("brand-1", "user-1", ["ChatGPT"], ["TOFU"])
    dispatcher.messages.clear()
    _age(test_db, run, 15)
    holder = LockService(test_db).acquire(settings.SWEEP_LOCK_NAME, 300)

    assert StuckRunDetector(test_db, pipeline, stale_minutes=10).sweep() == 0
    assert dispatcher.messages == []
    assert LockService(test_db).check(settings.SWEEP_LOCK_NAME).holder_id == holder


def test_stale_run_with_nothing_left_is_finalized(test_db, brand, pipeline, dispatcher, notifier, deliver):
    run = pipeline.start("brand-1", "user-1", ["ChatGPT"], ["TOFU"])
    # Unit finished but the final hand-off never happened
    unit = test_db.query(WorkUnit).filter(WorkUnit.run_id == run.run_id).one()
    unit.status = "completed"
    unit.completed_at = utcnow()
    test_db.commit()
    dispatcher.messages.clear()
    _age(test_db, run, 15)

    assert StuckRunDetector(test_db, pipeline, stale_minutes=10).sweep() == 1

    test_db.refresh(run)
    assert run.status == "completed"
    assert dispatcher.messages == []
    assert len(notifier.sent) == 1


def test_dispatch_failure_leaves_run_for_next_sweep(test_db, brand, pipeline, dispatcher):
    run = pipeline.start("brand-1", "user-1", ["ChatGPT"], ["TOFU"])
    _age(test_db, run, 15)
    dispatcher.fail = True

    assert StuckRunDetector(test_db, pipeline, stale_minutes=10).sweep() == 0

    test_db.refresh(run)
    assert run.status == "running"
    assert not LockService(test_db).check(settings.SWEEP_LOCK_NAME).held


def test_batch_size_takes_oldest_first(test_db, brand, pipeline, dispatcher):
    for i in range(2, 5):
        test_db.add(Brand(brand_id=f"brand-{i}", name=f"Brand {i}", owner_id="user-1"))
    test_db.commit()

    runs = {}
    for i, age in zip(range(1, 5), (20, 40, 30, 15)):
        run = pipeline.start(f"brand-{i}", "user-1", ["ChatGPT"], ["TOFU"])
        _age(test_db, run, age)
        runs[i] = run.run_id
    dispatcher.messages.clear()

    assert StuckRunDetector(test_db, pipeline, stale_minutes=10, batch_size=2).sweep() == 2
    assert [m["run_id"] for m in dispatcher.messages] == [runs[2], runs[3]]


def test_purge_expired_runs(test_db, brand, pipeline, deliver):
    """Test terminal runs past retention are deleted with their units and results."""
    old = pipeline.start("brand-1", "user-1", ["ChatGPT"], ["TOFU"])
    deliver()
    old.completed_at = utcnow() - timedelta(days=settings.RUN_RETENTION_DAYS + 5)
    test_db.commit()
    old_id = old.run_id

    recent = pipeline.start("brand-1", "user-1", ["ChatGPT"], ["TOFU"])
    deliver()

    purged = StuckRunDetector(test_db, pipeline).purge_expired_runs()

    assert purged == 1
    assert test_db.query(AnalysisRun).filter(AnalysisRun.run_id == old_id).first() is None
    assert test_db.query(WorkUnit).filter(WorkUnit.run_id == old_id).count() == 0
    assert test_db.query(AnalysisResult).filter(AnalysisResult.run_id == old_id).count() == 0
    assert test_db.query(AnalysisRun).filter(AnalysisRun.run_id == recent.run_id).first() is not None
