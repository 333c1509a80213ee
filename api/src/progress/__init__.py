"""Video progress reconciliation module.

Provides:
- Monotonic merge of watch ticks into per-video records
- Per learner+video throttling and in-flight dedup
- Course progress aggregation
- One-shot course completion signal
"""

from .models import (
    PROGRESS_TABLES_CQL,
    CourseProgressSummary,
    ProgressRecord,
)


__all__ = [
    "PROGRESS_TABLES_CQL",
    "CourseProgressSummary",
    "ProgressRecord",
]
