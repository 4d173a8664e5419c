"""Work unit model: one (model, stage) pair of a run."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from brandscan.database import Base, utcnow


class WorkUnit(Base):
    """WorkUnit tracks the execution of a single pair within a run."""

    __tablename__ = "work_units"

    unit_id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Text, ForeignKey("analysis_runs.run_id", ondelete="CASCADE"), nullable=False)
    model = Column(Text, nullable=False)
    stage = Column(Text, nullable=False)
    position = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="pending")  # 'pending', 'running', 'completed', 'failed'
    attempts = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    error_message = Column(Text)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    run = relationship("AnalysisRun", back_populates="units")

    __table_args__ = (
        UniqueConstraint("run_id", "model", "stage", name="uq_work_units_run_pair"),
        Index("idx_work_units_run_status", "run_id", "status"),
    )

    @property
    def is_done(self) -> bool:
        return self.status in ("completed", "failed")

    @property
    def label(self) -> str:
        return f"{self.model}-{self.stage}"
