"""QAFlow - Activity Log API Routes

Activity log writes/queries and the session-keyed pipeline step log.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from qaflow.database.config import get_db
from qaflow.models.activity_schemas import ActivityCreate, ActivityResult, PipelineStepCreate
from qaflow.services.activity_service import (
    get_activities,
    pipeline_step_to_dict,
    save_activity,
    save_pipeline_step,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/activities", tags=["activities"])

# mounted outside /api/v1
pipeline_log_router = APIRouter(prefix="/api/pipeline", tags=["pipeline-log"])


@router.post("", response_model=ActivityResult, status_code=201)
def create_activity(req: ActivityCreate, db: Session = Depends(get_db)):
    """Store one activity row"""
    result = save_activity(
        db,
        req.step_name,
        req.activity_type,
        req.details,
        session_id=req.session_id,
        step_type=req.step_type,
        payload=req.payload,
    )
    if not result.success:
        error = result.error or ""
        if error.startswith("Missing"):
            status_code = 422
        elif error == "Activity log disabled":
            status_code = 503
        else:
            status_code = 500
        return JSONResponse(status_code=status_code, content=result.model_dump())
    return result


@router.get("", response_model=ActivityResult)
def list_activities(
    activity_type: Optional[str] = None,
    limit: int = Query(500, ge=1, le=5000),
    db: Session = Depends(get_db),
):
    """Activities newest first"""
    result = get_activities(db, activity_type, limit=limit)
    if not result.success:
        return JSONResponse(status_code=500, content=result.model_dump())
    return result


@pipeline_log_router.post("/log", status_code=201)
def log_pipeline_step(req: PipelineStepCreate, db: Session = Depends(get_db)):
    """Append one pipeline step row for a session"""
    if not req.session_id or not req.step_type or not req.payload:
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})

    try:
        step = save_pipeline_step(db, req.session_id, req.step_type, req.payload)
    except Exception:
        logger.exception("Failed to log pipeline step")
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})

    return pipeline_step_to_dict(step)
