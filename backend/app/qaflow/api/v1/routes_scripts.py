"""QAFlow - Script API Routes

Generated Playwright scripts and their execution results.
"""
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from qaflow.api.deps.session_deps import get_store
from qaflow.models.pipeline_schemas import ExecutionResults
from qaflow.models.store_schemas import GeneratedScript, ScriptCreate
from qaflow.services.pipeline_store import PipelineDataStore

router = APIRouter(prefix="/scripts", tags=["scripts"])


@router.get("", response_model=list[GeneratedScript])
def list_scripts(
    test_case_id: Optional[str] = None,
    story_id: Optional[str] = None,
    store: PipelineDataStore = Depends(get_store),
):
    if test_case_id:
        return store.get_scripts_by_test_case(test_case_id)
    if story_id:
        return store.get_scripts_for_story(story_id)
    return store.list_scripts()


@router.post("", response_model=GeneratedScript, status_code=201)
def create_script(req: ScriptCreate, store: PipelineDataStore = Depends(get_store)):
    """Store a script; an existing id is replaced"""
    script_id = req.id or f"script-{req.test_case_id}-{int(time.time() * 1000)}"
    return store.add_script(
        GeneratedScript(
            id=script_id,
            test_case_id=req.test_case_id,
            test_case_name=req.test_case_name or req.script.test_name,
            script=req.script,
            dom_mapping=store.get_dom_mapping(req.test_case_id),
        )
    )


@router.get("/{script_id}", response_model=GeneratedScript)
def get_script(script_id: str, store: PipelineDataStore = Depends(get_store)):
    script = store.get_script(script_id)
    if not script:
        raise HTTPException(status_code=404, detail="Script not found")
    return script


@router.get("/{script_id}/execution-result", response_model=ExecutionResults)
def get_execution_result(script_id: str, store: PipelineDataStore = Depends(get_store)):
    result = store.get_execution_result(script_id)
    if not result:
        raise HTTPException(status_code=404, detail="Execution result not found")
    return result


@router.put("/{script_id}/execution-result", response_model=GeneratedScript)
def put_execution_result(script_id: str, req: ExecutionResults, store: PipelineDataStore = Depends(get_store)):
    script = store.add_execution_result(script_id, req)
    if not script:
        raise HTTPException(status_code=404, detail="Script not found")
    return script
