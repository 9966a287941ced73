"""QAFlow - Activity Schemas

Activity log and pipeline step log request/response models.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class ActivityCreate(BaseModel):
    """Activity write request"""
    step_name: str = Field(..., min_length=1)
    activity_type: str = Field(..., min_length=1)
    details: Any
    session_id: Optional[str] = None
    step_type: Optional[str] = None
    payload: Optional[Any] = None


class ActivityResult(BaseModel):
    """Success/failure envelope returned by activity log operations"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None


class PipelineStepCreate(BaseModel):
    """Pipeline step log request; emptiness is checked by the route (400)"""
    session_id: Optional[str] = None
    step_type: Optional[str] = None
    payload: Optional[Any] = None
