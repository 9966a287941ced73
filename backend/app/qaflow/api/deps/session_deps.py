"""QAFlow - Session Dependencies

Resolve the pipeline session of a request from the X-Session-ID header.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from qaflow.services.session_service import DEFAULT_SESSION_ID, PipelineSession, SessionRegistry
from qaflow.services.pipeline_store import PipelineDataStore


def get_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "sessions", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Session registry not initialised")
    return registry


def get_session_id(
    x_session_id: Optional[str] = Header(default=None, alias="X-Session-ID"),
) -> str:
    return (x_session_id or "").strip() or DEFAULT_SESSION_ID


def get_session(
    session_id: str = Depends(get_session_id),
    registry: SessionRegistry = Depends(get_registry),
) -> PipelineSession:
    return registry.get_or_create(session_id)


def get_store(session: PipelineSession = Depends(get_session)) -> PipelineDataStore:
    """Data store of the current session"""
    return session.store
