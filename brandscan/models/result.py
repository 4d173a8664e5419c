"""Analysis result model."""

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Text, UniqueConstraint

from brandscan.database import Base, JSONType, utcnow


class AnalysisResult(Base):
    """Durable, append-only output of one completed work unit."""

    __tablename__ = "analysis_results"

    result_id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    run_id = Column(Text, ForeignKey("analysis_runs.run_id", ondelete="CASCADE"), nullable=False)
    brand_id = Column(Text, nullable=False)
    user_id = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    stage = Column(Text, nullable=False)
    overall_score = Column(Float, nullable=False)
    weighted_score = Column(Float, nullable=False)
    success_rate = Column(Float, nullable=False)
    total_response_time = Column(Float, nullable=False)
    aggregated_sentiment = Column(JSONType)  # {overall, confidence, distribution}
    prompt_results = Column(JSONType)
    raw_response = Column(JSONType)
    status = Column(Text, nullable=False)  # 'success', 'error', 'warning'
    trigger_type = Column(Text, nullable=False, default="manual")
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("run_id", "model", "stage", name="uq_analysis_results_run_pair"),
        Index("idx_analysis_results_brand_created", "brand_id", "created_at"),
    )
