"""Analysis run model."""

import uuid

from sqlalchemy import Column, DateTime, Index, Integer, Text, text
from sqlalchemy.orm import relationship

from brandscan.database import Base, JSONType, utcnow

TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class AnalysisRun(Base):
    """One end-to-end analysis invocation over a set of model/stage pairs."""

    __tablename__ = "analysis_runs"

    run_id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    brand_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    models = Column(JSONType, nullable=False)  # e.g. ["ChatGPT", "Claude"]
    stages = Column(JSONType, nullable=False)  # e.g. ["TOFU", "MOFU"]
    status = Column(Text, nullable=False, default="running")  # 'running', 'completed', 'failed', 'cancelled'
    total_tasks = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)
    current_task = Column(Text)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)
    error_message = Column(Text)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    units = relationship(
        "WorkUnit",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="WorkUnit.position",
    )

    __table_args__ = (
        Index("idx_analysis_runs_brand_started", "brand_id", "started_at"),
        Index("idx_analysis_runs_status_started", "status", "started_at"),
        # At most one running run per brand
        Index(
            "uq_analysis_runs_brand_running",
            "brand_id",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )
