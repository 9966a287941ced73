"""QAFlow - Pipeline API Routes

Drive a user story through the seven stages. Each story's orchestrator lives
in the caller's session (X-Session-ID).
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from qaflow.api.deps.session_deps import get_registry, get_session_id
from qaflow.models.pipeline_schemas import UserStoryInput
from qaflow.services.orchestrator_service import (
    REMOTE_ERROR_KIND,
    StageBusyError,
    StageNotReachableError,
    StageOrchestrator,
    StageOutcome,
    StageValidationError,
)
from qaflow.services.session_service import SessionRegistry

router = APIRouter(prefix="/pipeline/stories", tags=["pipeline"])

# StageOutcome.error_kind -> HTTP status
ERROR_STATUS = {
    StageValidationError.kind: 422,
    StageNotReachableError.kind: 409,
    StageBusyError.kind: 409,
    REMOTE_ERROR_KIND: 502,
}


class PipelineOpenRequest(BaseModel):
    initial_data: Optional[UserStoryInput] = None
    active_range: Optional[list[int]] = Field(None, min_length=2, max_length=2)
    standalone_stage: Optional[int] = Field(None, ge=1, le=7)
    target_url: Optional[str] = None


class UrlRequest(BaseModel):
    url: Optional[str] = None


class BaseUrlRequest(BaseModel):
    base_url: Optional[str] = None


class AnswersRequest(BaseModel):
    """Clarification answers keyed by question"""
    answers: dict[str, str] = Field(..., min_length=1)


class StageOutcomeResponse(BaseModel):
    success: bool
    stage: int
    current_stage: int
    advanced: bool
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    pipeline: dict[str, Any]


def _orchestrator(
    story_id: str,
    session_id: str = Depends(get_session_id),
    registry: SessionRegistry = Depends(get_registry),
) -> StageOrchestrator:
    orchestrator = registry.get_orchestrator(session_id, story_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"Pipeline not opened for story {story_id}")
    return orchestrator


def _respond(orchestrator: StageOrchestrator, outcome: StageOutcome):
    result = outcome.result
    if isinstance(result, BaseModel):
        result = result.model_dump(mode="json", by_alias=True)

    body = StageOutcomeResponse(
        success=outcome.success,
        stage=int(outcome.stage),
        current_stage=int(outcome.current_stage),
        advanced=outcome.advanced,
        result=result,
        error=outcome.error,
        error_kind=outcome.error_kind,
        pipeline=orchestrator.snapshot(),
    )
    if outcome.success:
        return body
    return JSONResponse(
        status_code=ERROR_STATUS.get(outcome.error_kind, 500),
        content=body.model_dump(mode="json"),
    )


@router.post("/{story_id}", status_code=201)
def open_pipeline(
    story_id: str,
    req: PipelineOpenRequest,
    session_id: str = Depends(get_session_id),
    registry: SessionRegistry = Depends(get_registry),
):
    """Open (or reset) the pipeline of a story"""
    try:
        orchestrator = registry.open_orchestrator(
            session_id,
            story_id,
            active_range=tuple(req.active_range) if req.active_range else None,
            standalone_stage=req.standalone_stage,
            initial_data=req.initial_data,
            target_url=req.target_url,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return orchestrator.snapshot()


@router.get("/{story_id}")
def get_pipeline(orchestrator: StageOrchestrator = Depends(_orchestrator)):
    return orchestrator.snapshot()


@router.post("/{story_id}/stages/1", response_model=StageOutcomeResponse)
async def run_stage_1(
    req: Optional[UserStoryInput] = None,
    orchestrator: StageOrchestrator = Depends(_orchestrator),
):
    """Testability analysis"""
    return _respond(orchestrator, await orchestrator.run_testability(req))


@router.post("/{story_id}/stages/2", response_model=StageOutcomeResponse)
async def run_stage_2(orchestrator: StageOrchestrator = Depends(_orchestrator)):
    """Rule grounding"""
    return _respond(orchestrator, await orchestrator.run_rule_grounding())


@router.post("/{story_id}/stages/2/refine", response_model=StageOutcomeResponse)
async def refine_stage_2(req: AnswersRequest, orchestrator: StageOrchestrator = Depends(_orchestrator)):
    """Refine the story with clarification answers and re-run rule grounding"""
    return _respond(orchestrator, await orchestrator.refine_requirements(req.answers))


@router.post("/{story_id}/proceed", response_model=StageOutcomeResponse)
async def proceed_anyway(orchestrator: StageOrchestrator = Depends(_orchestrator)):
    return _respond(orchestrator, await orchestrator.proceed_anyway())


@router.post("/{story_id}/stages/3", response_model=StageOutcomeResponse)
async def run_stage_3(orchestrator: StageOrchestrator = Depends(_orchestrator)):
    """Ambiguity classification"""
    return _respond(orchestrator, await orchestrator.run_ambiguity())


@router.post("/{story_id}/stages/3/answers", response_model=StageOutcomeResponse)
async def answer_stage_3(req: AnswersRequest, orchestrator: StageOrchestrator = Depends(_orchestrator)):
    return _respond(orchestrator, orchestrator.record_resolution_answers(req.answers))


@router.post("/{story_id}/stages/4", response_model=StageOutcomeResponse)
async def run_stage_4(orchestrator: StageOrchestrator = Depends(_orchestrator)):
    """Test case generation"""
    return _respond(orchestrator, await orchestrator.run_test_generation())


@router.post("/{story_id}/stages/5", response_model=StageOutcomeResponse)
async def run_stage_5(
    req: Optional[UrlRequest] = None,
    orchestrator: StageOrchestrator = Depends(_orchestrator),
):
    """DOM mapping"""
    return _respond(orchestrator, await orchestrator.run_dom_mapping(req.url if req else None))


@router.post("/{story_id}/stages/6", response_model=StageOutcomeResponse)
async def run_stage_6(
    req: Optional[BaseUrlRequest] = None,
    orchestrator: StageOrchestrator = Depends(_orchestrator),
):
    """Playwright script generation"""
    return _respond(orchestrator, await orchestrator.run_script_generation(req.base_url if req else None))


@router.post("/{story_id}/stages/7", response_model=StageOutcomeResponse)
async def run_stage_7(
    req: Optional[BaseUrlRequest] = None,
    orchestrator: StageOrchestrator = Depends(_orchestrator),
):
    """Test execution"""
    return _respond(orchestrator, await orchestrator.run_execution(req.base_url if req else None))


@router.post("/{story_id}/stages/7/rerun-failed", response_model=StageOutcomeResponse)
async def rerun_failed(
    req: Optional[BaseUrlRequest] = None,
    orchestrator: StageOrchestrator = Depends(_orchestrator),
):
    return _respond(orchestrator, await orchestrator.rerun_failed(req.base_url if req else None))
