"""Read-side catalog tables shared with the course administration service.

The progress engine never writes these tables; it only needs the ordered
video list of a course and each video's declared length.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID


# Videos of a course in playback order
# Partition key: course_id, clustering by position for ordered reads
COURSE_VIDEOS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_videos (
    course_id UUID,
    position INT,
    video_id UUID,
    title TEXT,
    duration_seconds DOUBLE,
    PRIMARY KEY (course_id, position, video_id)
) WITH CLUSTERING ORDER BY (position ASC, video_id ASC)
"""

# Lookup: video by id (length validation without knowing the course)
VIDEOS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.videos (
    video_id UUID PRIMARY KEY,
    course_id UUID,
    title TEXT,
    duration_seconds DOUBLE
)
"""

CATALOG_TABLES_CQL = [
    COURSE_VIDEOS_TABLE_CQL,
    VIDEOS_TABLE_CQL,
]


@dataclass(frozen=True)
class CatalogVideo:
    """A video as declared by the course catalog."""

    course_id: UUID
    video_id: UUID
    position: int
    title: str | None = None
    duration_seconds: float = 0.0

    @classmethod
    def from_row(cls, row: Any) -> "CatalogVideo":
        """Create CatalogVideo instance from a course_videos row."""
        return cls(
            course_id=row.course_id,
            video_id=row.video_id,
            position=row.position,
            title=row.title,
            duration_seconds=float(row.duration_seconds or 0),
        )
