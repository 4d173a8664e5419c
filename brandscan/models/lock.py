"""Maintenance lock model."""

from sqlalchemy import Column, DateTime, Index, Text

from brandscan.database import Base


class Lock(Base):
    """Mutual-exclusion record for a named recurring maintenance task.

    A lock is held while ``now < expires_at``; an expired row is free
    regardless of ``holder_id`` and is reclaimed by the next acquirer.
    """

    __tablename__ = "maintenance_locks"

    name = Column(Text, primary_key=True)
    holder_id = Column(Text, nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (Index("idx_maintenance_locks_expires_at", "expires_at"),)
