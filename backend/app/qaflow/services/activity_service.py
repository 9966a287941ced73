"""Activity Service

Activity log writes and queries, plus the session-keyed pipeline step log.
Activity operations never raise: failures come back as ActivityResult values.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import BaseModel
from sqlalchemy.orm import Session

from qaflow.core.config import settings
from qaflow.database.activity_models import PipelineStep, ProjectActivity
from qaflow.models.activity_schemas import ActivityResult

logger = logging.getLogger(__name__)


def is_activity_log_enabled() -> bool:
    return settings.ACTIVITY_LOG_ENABLED


def _jsonable(value: Any) -> Any:
    """Dump pydantic models (possibly nested in lists/dicts) into JSON-able data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def save_activity(
    db: Session,
    step_name: str,
    activity_type: str,
    details: Any,
    *,
    session_id: str | None = None,
    step_type: str | None = None,
    payload: Any = None,
) -> ActivityResult:
    """
    Write an activity row.

    Args:
        db: database session
        step_name: step name (required)
        activity_type: activity type, e.g. user_story / test_case / pipeline_step (required)
        details: entity-specific data (required)
        session_id: session the activity belongs to
        step_type: type of step/operation
        payload: structured data for the step

    Returns:
        ActivityResult carrying the stored row as a dict, or the failure reason
    """
    missing = [
        name for name, value in (("step_name", step_name), ("activity_type", activity_type))
        if not value
    ]
    if details is None:
        missing.append("details")
    if missing:
        return ActivityResult(success=False, error=f"Missing required fields: {', '.join(missing)}")

    if not is_activity_log_enabled():
        logger.debug("Activity log disabled, skipping %s", step_name)
        return ActivityResult(success=False, error="Activity log disabled")

    try:
        row = ProjectActivity(
            session_id=session_id,
            step_name=step_name,
            step_type=step_type,
            activity_type=activity_type,
            details=_jsonable(details),
            payload=_jsonable(payload),
        )
        db.add(row)
        db.commit()
        db.refresh(row)

        logger.info(f"Activity saved: {activity_type}/{step_name} id={row.id}")
        return ActivityResult(success=True, data=activity_to_dict(row))

    except Exception:
        logger.exception("Failed to save activity")
        db.rollback()
        return ActivityResult(success=False, error="Failed to save activity")


def get_activities(
    db: Session,
    activity_type: str | None = None,
    *,
    limit: int = 500,
) -> ActivityResult:
    """Activities newest first, optionally filtered by type."""
    try:
        query = db.query(ProjectActivity)
        if activity_type:
            query = query.filter(ProjectActivity.activity_type == activity_type)

        rows = (
            query.order_by(ProjectActivity.created_at.desc(), ProjectActivity.id.desc())
            .limit(limit)
            .all()
        )
        return ActivityResult(success=True, data=[activity_to_dict(r) for r in rows])

    except Exception:
        logger.exception("Failed to get activities")
        return ActivityResult(success=False, error="Failed to get activities")


def save_pipeline_step(db: Session, session_id: str, step_type: str, payload: Any) -> PipelineStep:
    """
    Insert a pipeline step row.

    Raises:
        ValueError: a required field is missing or empty
        SQLAlchemyError: storage failure (session rolled back)
    """
    if not session_id or not step_type or not payload:
        raise ValueError("Missing required fields")

    step = PipelineStep(session_id=session_id, step_type=step_type, payload=_jsonable(payload))
    try:
        db.add(step)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(step)
    return step


def activity_to_dict(row: ProjectActivity) -> dict[str, Any]:
    return {
        "id": row.id,
        "session_id": row.session_id,
        "step_name": row.step_name,
        "step_type": row.step_type,
        "activity_type": row.activity_type,
        "payload": row.payload,
        "details": row.details,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def pipeline_step_to_dict(row: PipelineStep) -> dict[str, Any]:
    return {
        "id": row.id,
        "session_id": row.session_id,
        "step_type": row.step_type,
        "payload": row.payload,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class ActivityRecorder:
    """Best-effort activity writer with its own session per write.

    Used by the stage orchestrator; logging must never block a stage.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(
        self,
        step_name: str,
        activity_type: str,
        details: Any,
        *,
        session_id: str | None = None,
        step_type: str | None = None,
        payload: Any = None,
    ) -> ActivityResult:
        try:
            db = self._session_factory()
        except Exception as e:
            logger.warning(f"Activity recorder could not open a session: {e}")
            return ActivityResult(success=False, error="Failed to save activity")

        try:
            return save_activity(
                db,
                step_name,
                activity_type,
                details,
                session_id=session_id,
                step_type=step_type,
                payload=payload,
            )
        except Exception as e:
            logger.warning(f"Activity recorder failed for {step_name}: {e}", exc_info=True)
            return ActivityResult(success=False, error="Failed to save activity")
        finally:
            db.close()
