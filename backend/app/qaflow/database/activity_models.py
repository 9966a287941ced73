"""Activity Log Models

Generic append-only activity log plus the session-keyed pipeline step log.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from qaflow.database.config import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityType(str, enum.Enum):
    """Known activity types (the column itself accepts any string)."""
    USER_STORY = "user_story"
    TEST_CASE = "test_case"
    PIPELINE_STEP = "pipeline_step"
    SCRIPT = "script"
    EXECUTION = "execution"


class ProjectActivity(Base):
    """Single table storing all application activities"""

    __tablename__ = "project_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Text, nullable=True, index=True)
    step_name = Column(Text, nullable=False)
    step_type = Column(Text, nullable=True)
    activity_type = Column(String(100), nullable=False, index=True)

    payload = Column(JSON, nullable=True)  # structured data for the step
    details = Column(JSON, nullable=False)  # entity-specific data

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ProjectActivity {self.id} {self.activity_type}:{self.step_name}>"


class PipelineStep(Base):
    """Pipeline step log keyed by session"""

    __tablename__ = "pipeline_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Text, nullable=False, index=True)
    step_type = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<PipelineStep {self.id} {self.step_type} session={self.session_id}>"
