"""Tests for the distributed lock service."""

from datetime import timedelta

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from brandscan.database import utcnow
from brandscan.models.lock import Lock
from brandscan.services.locks import LockService


def _expire(db, name):
    db.query(Lock).filter(Lock.name == name).update(
        {Lock.expires_at: utcnow() - timedelta(seconds=1)}, synchronize_session=False
    )
    db.commit()


def test_only_one_holder(test_db):
    """Test two instances acquiring in quick succession get one holder."""
    other_session = sessionmaker(bind=test_db.get_bind())()
    first = LockService(test_db)
    second = LockService(other_session)

    holder = first.acquire("sweep", 300)
    contender = second.acquire("sweep", 300)

    assert holder is not None
    assert contender is None
    assert first.check("sweep").holder_id == holder
    other_session.close()


def test_release_requires_holder(test_db):
    locks = LockService(test_db)
    holder = locks.acquire("sweep", 300)

    assert not locks.release("sweep", "someone-else")
    assert locks.check("sweep").held
    assert locks.release("sweep", holder)
    assert not locks.check("sweep").held


def test_expired_lock_is_reclaimed(test_db):
    """Test an expired lock can be taken over and the stale holder loses it."""
    locks = LockService(test_db)
    stale = locks.acquire("sweep", 300)
    _expire(test_db, "sweep")

    fresh = locks.acquire("sweep", 300)

    assert fresh is not None
    assert fresh != stale
    assert not locks.release("sweep", stale)
    assert locks.check("sweep").holder_id == fresh


def test_extend(test_db):
    locks = LockService(test_db)
    holder = locks.acquire("sweep", 60)
    before = locks.check("sweep").expires_at

    assert locks.extend("sweep", holder, 600)
    assert locks.check("sweep").expires_at > before
    assert not locks.extend("sweep", "someone-else", 600)


def test_extend_after_expiry_fails(test_db):
    locks = LockService(test_db)
    holder = locks.acquire("sweep", 60)
    _expire(test_db, "sweep")

    assert not locks.extend("sweep", holder, 600)
    assert not locks.check("sweep").held


def test_locks_are_independent_by_name(test_db):
    locks = LockService(test_db)

    assert locks.acquire("sweep", 300)
    assert locks.acquire("purge", 300)


def _fail_storage(monkeypatch, db):
    """Make every statement on ``db`` raise an operational error."""

    def failing(*args, **kwargs):
        raise OperationalError("maintenance_locks", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "execute", failing)


def test_acquire_storage_error_is_not_acquired(test_db, monkeypatch):
    locks = LockService(test_db)
    _fail_storage(monkeypatch, test_db)

    assert locks.acquire("sweep", 300) is None
    assert not locks.check("sweep").held

    monkeypatch.undo()
    assert not locks.check("sweep").held
    assert locks.acquire("sweep", 300) is not None


def test_release_and_extend_storage_error(test_db, monkeypatch):
    """Test storage errors report failure and leave the session usable."""
    locks = LockService(test_db)
    holder = locks.acquire("sweep", 300)
    _fail_storage(monkeypatch, test_db)

    assert locks.release("sweep", holder) is False
    assert locks.extend("sweep", holder, 600) is False

    monkeypatch.undo()
    assert locks.check("sweep").holder_id == holder
    assert locks.extend("sweep", holder, 600)
    assert locks.release("sweep", holder)
    assert not locks.check("sweep").held
