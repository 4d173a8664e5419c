"""Distributed lock service for recurring maintenance tasks."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from brandscan.database import utcnow
from brandscan.models.lock import Lock

logger = logging.getLogger(__name__)


@dataclass
class LockState:
    """Read-only view of a named lock."""

    held: bool
    holder_id: Optional[str] = None
    acquired_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class LockService:
    """Mutual exclusion across process instances backed by one row per lock name.

    Every storage error is treated as "not acquired" / "not released".
    """

    def __init__(self, db: Session):
        self.db = db

    def acquire(self, name: str, duration_seconds: int) -> Optional[str]:
        """
        Claim the lock if it is absent or expired.

        Args:
            name: Lock name (one per maintenance task)
            duration_seconds: How long the claim is valid

        Returns:
            Fresh holder id on success, None if another holder is live
        """
        holder_id = str(uuid.uuid4())
        now = utcnow()
        expires_at = now + timedelta(seconds=duration_seconds)

        try:
            # Reclaim an expired row in one conditional write
            claimed = (
                self.db.query(Lock)
                .filter(Lock.name == name, Lock.expires_at <= now)
                .update(
                    {
                        Lock.holder_id: holder_id,
                        Lock.acquired_at: now,
                        Lock.expires_at: expires_at,
                    },
                    synchronize_session=False,
                )
            )
            if claimed:
                self.db.commit()
                logger.info(f"Acquired expired lock '{name}' as {holder_id}, expires at {expires_at.isoformat()}")
                return holder_id

            # No expired row: create it; a unique violation means a live holder exists
            self.db.execute(
                insert(Lock).values(name=name, holder_id=holder_id, acquired_at=now, expires_at=expires_at)
            )
            self.db.commit()
            logger.info(f"Acquired lock '{name}' as {holder_id}, expires at {expires_at.isoformat()}")
            return holder_id

        except IntegrityError:
            self.db.rollback()
            logger.info(f"Lock '{name}' already held by another instance")
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error acquiring lock '{name}': {e}")
            return None

    def release(self, name: str, holder_id: str) -> bool:
        """Delete the lock only if ``holder_id`` still owns it."""
        try:
            deleted = (
                self.db.query(Lock)
                .filter(Lock.name == name, Lock.holder_id == holder_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error releasing lock '{name}': {e}")
            return False

        if deleted:
            logger.info(f"Released lock '{name}' held by {holder_id}")
            return True

        logger.warning(f"Could not release lock '{name}': not held by {holder_id}")
        return False

    def extend(self, name: str, holder_id: str, duration_seconds: int) -> bool:
        """Push expiry forward while ``holder_id`` is still the live holder."""
        now = utcnow()
        expires_at = now + timedelta(seconds=duration_seconds)
        try:
            updated = (
                self.db.query(Lock)
                .filter(Lock.name == name, Lock.holder_id == holder_id, Lock.expires_at > now)
                .update({Lock.expires_at: expires_at}, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error extending lock '{name}': {e}")
            return False

        if updated:
            logger.info(f"Extended lock '{name}' for {holder_id} until {expires_at.isoformat()}")
            return True

        logger.warning(f"Could not extend lock '{name}': not held by {holder_id} or expired")
        return False

    def check(self, name: str) -> LockState:
        try:
            lock = self.db.query(Lock).filter(Lock.name == name).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error checking lock '{name}': {e}")
            return LockState(held=False)

        if not lock or lock.expires_at <= utcnow():
            return LockState(held=False)

        return LockState(
            held=True,
            holder_id=lock.holder_id,
            acquired_at=lock.acquired_at,
            expires_at=lock.expires_at,
        )
