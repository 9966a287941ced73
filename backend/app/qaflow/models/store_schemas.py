"""QAFlow - Store Schemas

Records held by the pipeline data store, plus the request/response models of
the store-facing API routes.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from qaflow.models.pipeline_schemas import (
    AmbiguityClassification,
    DOMMappingResult,
    ExecutionResults,
    PlaywrightTest,
    Priority,
    RuleAuditResult,
    TestabilityInsight,
    TestCase,
    TestCaseStatus,
    TestType,
    UserStoryInput,
)

# test cases entered by hand without a parent story
UNASSIGNED_STORY_ID = "manual-entry"
# grouping key for test cases with no owning story
UNGROUPED = "ungrouped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# Store records
# ============================================================

class UserStoryMetadata(BaseModel):
    """User story plus the stage results attached to it"""
    user_story_id: str
    user_story: UserStoryInput
    test_case_ids: list[str] = Field(default_factory=list)
    stage1_result: Optional[TestabilityInsight] = None
    stage2_result: Optional[RuleAuditResult] = None
    stage3_result: Optional[AmbiguityClassification] = None
    stage7_result: Optional[ExecutionResults] = None

    # issue tracker origin (imported stories only)
    source_key: Optional[str] = None
    source_status: Optional[str] = None


class GeneratedScript(BaseModel):
    """Stage 6 script linked to its test case"""
    id: str
    test_case_id: str
    test_case_name: str
    script: PlaywrightTest
    dom_mapping: Optional[DOMMappingResult] = None
    execution_result: Optional[ExecutionResults] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_serializer("created_at", "updated_at")
    def serialize_dt(self, dt: datetime, _info):
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat().replace("+00:00", "Z")


class TestCaseUpdate(BaseModel):
    """Partial test case update; test_id is immutable"""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    test_type: Optional[TestType] = None
    preconditions: Optional[list[str]] = None
    steps: Optional[list[str]] = None
    expected_result: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[TestCaseStatus] = None
    automation_level: Optional[int] = Field(None, ge=0, le=100, alias="automationLevel")

    def changes(self) -> dict:
        """Fields explicitly set by the caller, keyed by attribute name"""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class ImportedStory(BaseModel):
    """Story record pulled from an external issue tracker"""
    key: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    description: str = ""
    status: str = ""


class TestCaseStats(BaseModel):
    total: int = 0
    draft: int = 0
    active: int = 0
    deprecated: int = 0
    high_priority_draft: int = 0
    average_automation: int = 0


# ============================================================
# API request / response schemas
# ============================================================

class ManualTestCaseCreate(BaseModel):
    """Manually authored test case"""
    test_case: TestCase
    user_story_id: str = UNASSIGNED_STORY_ID


class BulkTestCaseUpdate(BaseModel):
    test_ids: list[str] = Field(..., min_length=1)
    updates: TestCaseUpdate


class BulkTestCaseUpdateResponse(BaseModel):
    updated_ids: list[str]
    skipped_ids: list[str]


class TestCaseListResponse(BaseModel):
    total: int
    items: list[TestCase]


class StoryImportRequest(BaseModel):
    stories: list[ImportedStory] = Field(..., min_length=1)


class StoryImportResponse(BaseModel):
    imported: list[UserStoryMetadata]
    skipped_keys: list[str]


class ScriptCreate(BaseModel):
    id: Optional[str] = None
    test_case_id: str
    test_case_name: str = ""
    script: PlaywrightTest
