"""QAFlow - TestCase API Routes

Test case management over the session data store.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from qaflow.api.deps.session_deps import get_store
from qaflow.models.pipeline_schemas import Priority, TestCase, TestCaseStatus
from qaflow.models.store_schemas import (
    BulkTestCaseUpdate,
    BulkTestCaseUpdateResponse,
    ManualTestCaseCreate,
    TestCaseListResponse,
    TestCaseStats,
    TestCaseUpdate,
    UserStoryMetadata,
)
from qaflow.services.pipeline_store import DuplicateTestCaseError, PipelineDataStore

router = APIRouter(prefix="/testcases", tags=["testcases"])


@router.get("", response_model=TestCaseListResponse)
def list_testcases(
    story_id: Optional[str] = None,
    status: Optional[TestCaseStatus] = None,
    priority: Optional[Priority] = None,
    search: Optional[str] = Query(None, description="Matches test id, name or description"),
    store: PipelineDataStore = Depends(get_store),
):
    """Test case list (filters)"""
    items = store.list_test_cases(story_id)

    if status:
        items = [tc for tc in items if tc.status == status]
    if priority:
        items = [tc for tc in items if tc.priority == priority]
    if search:
        needle = search.lower()
        items = [
            tc for tc in items
            if needle in tc.test_id.lower() or needle in tc.name.lower() or needle in tc.description.lower()
        ]

    return TestCaseListResponse(total=len(items), items=items)


@router.get("/stats", response_model=TestCaseStats)
def testcase_stats(store: PipelineDataStore = Depends(get_store)):
    return store.test_case_stats()


@router.get("/grouped", response_model=dict[str, list[TestCase]])
def grouped_testcases(store: PipelineDataStore = Depends(get_store)):
    """Test cases keyed by owning story"""
    return store.group_test_cases_by_story()


@router.post("", response_model=TestCase, status_code=201)
def create_testcase(req: ManualTestCaseCreate, store: PipelineDataStore = Depends(get_store)):
    """Add a manually authored test case"""
    try:
        return store.add_manual_test_case(req.test_case, req.user_story_id)
    except DuplicateTestCaseError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/bulk-update", response_model=BulkTestCaseUpdateResponse)
def bulk_update_testcases(req: BulkTestCaseUpdate, store: PipelineDataStore = Depends(get_store)):
    updated = store.bulk_update_test_cases(req.test_ids, req.updates)
    return BulkTestCaseUpdateResponse(
        updated_ids=updated,
        skipped_ids=[t for t in dict.fromkeys(req.test_ids) if t not in updated],
    )


@router.get("/{test_id}", response_model=TestCase)
def get_testcase(test_id: str, store: PipelineDataStore = Depends(get_store)):
    tc = store.get_test_case(test_id)
    if not tc:
        raise HTTPException(status_code=404, detail="Test case not found")
    return tc


@router.get("/{test_id}/story", response_model=UserStoryMetadata)
def get_testcase_story(test_id: str, store: PipelineDataStore = Depends(get_store)):
    """Owning user story of a test case"""
    story = store.get_test_case_user_story(test_id)
    if not story:
        raise HTTPException(status_code=404, detail="Owning user story not found")
    return story


@router.patch("/{test_id}", response_model=TestCase)
def update_testcase(test_id: str, req: TestCaseUpdate, store: PipelineDataStore = Depends(get_store)):
    tc = store.update_test_case(test_id, req)
    if not tc:
        raise HTTPException(status_code=404, detail="Test case not found")
    return tc


@router.delete("/{test_id}", status_code=204)
def delete_testcase(test_id: str, store: PipelineDataStore = Depends(get_store)):
    if not store.remove_test_case(test_id):
        raise HTTPException(status_code=404, detail="Test case not found")
    return None
