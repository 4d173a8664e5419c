"""SQLAlchemy ORM models."""

from brandscan.models.lock import Lock
from brandscan.models.records import Brand, User
from brandscan.models.result import AnalysisResult
from brandscan.models.run import TERMINAL_STATUSES, AnalysisRun
from brandscan.models.work_unit import WorkUnit

__all__ = [
    "AnalysisRun",
    "WorkUnit",
    "Lock",
    "AnalysisResult",
    "Brand",
    "User",
    "TERMINAL_STATUSES",
]
