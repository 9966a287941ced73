"""QAFlow - User Story API Routes

Story records of the session data store, tracker imports and DOM mappings.
"""
from fastapi import APIRouter, Depends, HTTPException

from qaflow.api.deps.session_deps import get_store
from qaflow.models.pipeline_schemas import DOMMappingResult
from qaflow.models.store_schemas import StoryImportRequest, StoryImportResponse, UserStoryMetadata
from qaflow.services.pipeline_store import PipelineDataStore

router = APIRouter(prefix="/stories", tags=["stories"])


@router.get("", response_model=list[UserStoryMetadata])
def list_stories(store: PipelineDataStore = Depends(get_store)):
    return store.list_user_stories()


@router.post("/import", response_model=StoryImportResponse, status_code=201)
def import_stories(req: StoryImportRequest, store: PipelineDataStore = Depends(get_store)):
    """Import issue tracker stories; already known keys are skipped"""
    imported = store.import_user_stories(req.stories)
    created = {s.user_story_id for s in imported}
    return StoryImportResponse(
        imported=imported,
        skipped_keys=[s.key for s in req.stories if s.key not in created],
    )


@router.get("/{story_id}", response_model=UserStoryMetadata)
def get_story(story_id: str, store: PipelineDataStore = Depends(get_store)):
    story = store.get_user_story(story_id)
    if not story:
        raise HTTPException(status_code=404, detail="User story not found")
    return story


@router.get("/{story_id}/dom-mapping", response_model=DOMMappingResult)
def get_dom_mapping(story_id: str, store: PipelineDataStore = Depends(get_store)):
    mapping = store.get_dom_mapping(story_id)
    if not mapping:
        raise HTTPException(status_code=404, detail="DOM mapping not found")
    return mapping


@router.put("/{story_id}/dom-mapping", response_model=DOMMappingResult)
def put_dom_mapping(story_id: str, mapping: DOMMappingResult, store: PipelineDataStore = Depends(get_store)):
    """Set the mapping for a story; last write wins"""
    store.add_dom_mapping(story_id, mapping)
    return store.get_dom_mapping(story_id)
