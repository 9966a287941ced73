"""QAFlow - Pipeline Schemas

Request/response contracts of the seven pipeline stages, as exchanged with the
remote AI pipeline service. Field names follow the service's JSON.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================
# Stage 1: Testability Analysis
# ============================================================

class UserStoryInput(BaseModel):
    """User story text as submitted to the pipeline"""
    user_story: str = Field(..., min_length=1)
    detailed_description: Optional[str] = None
    acceptance_criteria: Optional[str] = None

    @field_validator("user_story")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("user_story must not be blank")
        return value


class ChecklistStatus(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"
    UNCLEAR = "Unclear"


class TestabilityStatus(str, Enum):
    TEST_READY = "Likely Test-Ready"
    NEEDS_CLARIFICATION = "Blocked – Needs Clarification"


class TestabilityChecklistItem(BaseModel):
    dimension: str
    status: ChecklistStatus
    reason: str = ""


class TestabilityInsight(BaseModel):
    """Stage 1 result"""
    explicitly_stated_behaviors: list[str] = Field(default_factory=list)
    testability_checklist: list[TestabilityChecklistItem] = Field(default_factory=list)
    assumptions_required: list[str] = Field(default_factory=list)
    clarification_questions: list[str] = Field(default_factory=list)
    testability_status: TestabilityStatus
    status_reason: str = ""
    raw_llm_response: Optional[str] = None

    @property
    def is_test_ready(self) -> bool:
        return self.testability_status == TestabilityStatus.TEST_READY


# ============================================================
# Stage 2: Rule Grounding & Completeness
# ============================================================

class RuleGroundingInput(UserStoryInput):
    stage_1_behaviors: list[str] = Field(default_factory=list)


class CompletenessStatus(str, Enum):
    PRESENT = "Present"
    MISSING = "Missing"
    UNCLEAR = "Unclear"


class RuleStatus(str, Enum):
    RULE_COMPLETE = "Likely Rule-Complete"
    RULE_GAPS = "Blocked – Rule Gaps Identified"


class CompletenessEvaluation(BaseModel):
    category: str
    status: CompletenessStatus
    explanation: str = ""


class RuleAuditResult(BaseModel):
    """Stage 2 result"""
    explicit_rules: list[str] = Field(default_factory=list)
    completeness_evaluation: list[CompletenessEvaluation] = Field(default_factory=list)
    rule_gaps: list[str] = Field(default_factory=list)
    rule_conflicts: list[str] = Field(default_factory=list)
    clarification_questions: list[str] = Field(default_factory=list)
    rule_status: RuleStatus
    status_reason: str = ""
    raw_llm_response: Optional[str] = None

    @property
    def is_rule_complete(self) -> bool:
        return self.rule_status == RuleStatus.RULE_COMPLETE


class Clarification(BaseModel):
    """Question/answer pair fed into requirement refinement"""
    question: str
    answer: str


class RequirementRefinementInput(UserStoryInput):
    clarifications: list[Clarification] = Field(..., min_length=1)


class RequirementRefinementResult(BaseModel):
    updated_user_story: str = Field(..., min_length=1)
    updated_acceptance_criteria: str = ""
    updated_detailed_description: str = ""
    change_summary: str = ""
    raw_llm_response: Optional[str] = None

    @field_validator("updated_user_story")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("updated_user_story must not be blank")
        return value

    def to_story_input(self) -> UserStoryInput:
        return UserStoryInput(
            user_story=self.updated_user_story,
            detailed_description=self.updated_detailed_description or None,
            acceptance_criteria=self.updated_acceptance_criteria or None,
        )


# ============================================================
# Stage 3: Ambiguity Classification
# ============================================================

class AmbiguityClassificationInput(UserStoryInput):
    clarification_questions: list[str] = Field(default_factory=list)


class AmbiguityType(str, Enum):
    MISSING_REQUIREMENT = "Missing requirement"
    UNDEFINED_RULE = "Undefined rule"
    UNCLEAR_SCOPE = "Unclear scope"
    UNDEFINED_ACTOR = "Undefined actor/role"
    AMBIGUOUS_OUTCOME = "Ambiguous outcome"
    MISSING_EXCEPTION_HANDLING = "Missing exception handling"


class TestingImpact(str, Enum):
    BLOCKED = "Blocked"
    PARTIALLY_BLOCKED = "Partially blocked"


class ResolutionOwner(str, Enum):
    PRODUCT = "Product"
    BUSINESS = "Business"
    COMPLIANCE = "Compliance"
    TECH = "Tech"


class ClarificationItem(BaseModel):
    question: str
    ambiguity_type: AmbiguityType
    testing_impact: TestingImpact
    resolution_owner: ResolutionOwner
    mandatory: bool = False
    resolution_answer: Optional[str] = None


class AmbiguityClassification(BaseModel):
    """Stage 3 result"""
    clarification_items: list[ClarificationItem] = Field(default_factory=list)
    raw_llm_response: Optional[str] = None

    def stats(self) -> dict[str, int]:
        items = self.clarification_items
        return {
            "total": len(items),
            "mandatory": sum(1 for item in items if item.mandatory),
            "blocked": sum(1 for item in items if item.testing_impact == TestingImpact.BLOCKED),
        }

    def resolved_clarifications(self) -> Optional[str]:
        """Answered items as "Q: ... A: ..." lines, or None when nothing is answered"""
        lines = [
            f"Q: {item.question}\nA: {item.resolution_answer.strip()}"
            for item in self.clarification_items
            if item.resolution_answer and item.resolution_answer.strip()
        ]
        return "\n\n".join(lines) if lines else None


# ============================================================
# Stage 4: Test Case Generation
# ============================================================

class TestCaseGenerationInput(BaseModel):
    user_story: str
    explicit_rules: list[str] = Field(default_factory=list)
    explicit_behaviors: list[str] = Field(default_factory=list)
    resolved_clarifications: Optional[str] = None
    enriched_context: Optional[str] = None


class TestType(str, Enum):
    HAPPY_PATH = "Happy Path"
    VALIDATION = "Validation"
    NEGATIVE = "Negative"


class Priority(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class TestCaseStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    DEPRECATED = "deprecated"


class TestCase(BaseModel):
    """Generated or manually authored test case"""
    model_config = ConfigDict(populate_by_name=True)

    test_id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    test_type: TestType = TestType.HAPPY_PATH
    preconditions: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    expected_result: str = ""
    priority: Priority = Priority.MEDIUM
    status: TestCaseStatus = TestCaseStatus.DRAFT
    automation_level: int = Field(default=0, ge=0, le=100, alias="automationLevel")


class TestScenarios(BaseModel):
    """Stage 4 result"""
    test_cases: list[TestCase] = Field(default_factory=list)
    summary: str = ""
    raw_llm_response: Optional[str] = None


# ============================================================
# Stage 5: DOM Mapping
# ============================================================

class DOMMappingInput(BaseModel):
    url: str
    test_case_ids: list[str] = Field(default_factory=list)


class DOMElement(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    tag: str
    selector: str
    text_content: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    xpath: Optional[str] = None


class DOMMappingResult(BaseModel):
    """Stage 5 result; unknown keys from the service are kept as-is"""
    model_config = ConfigDict(extra="allow")

    url: str
    elements: list[DOMElement] = Field(default_factory=list)
    timestamp: str = ""


# ============================================================
# Stage 6: Playwright Script Generation
# ============================================================

class PlaywrightGenerationInput(BaseModel):
    user_story: str
    test_cases: list[dict[str, Any]] = Field(default_factory=list)
    dom_elements: list[dict[str, Any]] = Field(default_factory=list)
    explicit_rules: list[str] = Field(default_factory=list)
    base_url: Optional[str] = None


class PlaywrightTest(BaseModel):
    test_id: str
    test_name: str
    code: str
    imports: list[str] = Field(default_factory=list)
    description: str = ""


class PlaywrightScripts(BaseModel):
    """Stage 6 result"""
    scripts: list[PlaywrightTest] = Field(default_factory=list)
    setup_instructions: list[str] = Field(default_factory=list)
    summary: Optional[str] = None
    raw_llm_response: Optional[str] = None


# ============================================================
# Stage 7: Test Execution
# ============================================================

class ExecuteTestsInput(BaseModel):
    scripts: list[PlaywrightTest]
    base_url: Optional[str] = None


class TestStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    TIMEOUT = "timeout"
    PENDING = "pending"
    SKIPPED = "skipped"


class TestExecutionResult(BaseModel):
    test_id: str
    status: TestStatus
    output: str = ""
    error: str = ""
    duration_ms: Optional[int] = Field(default=None, ge=0)


class ExecutionResults(BaseModel):
    """Stage 7 result"""
    total_tests: int = 0
    passed: int = 0
    failed: int = 0
    errors: int = 0
    timeouts: int = 0
    pass_rate: float = 0.0
    test_results: list[TestExecutionResult] = Field(default_factory=list)

    @classmethod
    def from_test_results(cls, results: Iterable[TestExecutionResult]) -> "ExecutionResults":
        """Build results with counters recomputed from the per-test entries"""
        results = list(results)
        total = len(results)
        passed = sum(1 for r in results if r.status == TestStatus.PASSED)
        return cls(
            total_tests=total,
            passed=passed,
            failed=sum(1 for r in results if r.status == TestStatus.FAILED),
            errors=sum(1 for r in results if r.status == TestStatus.ERROR),
            timeouts=sum(1 for r in results if r.status == TestStatus.TIMEOUT),
            pass_rate=round(passed / total * 100, 1) if total else 0.0,
            test_results=results,
        )

    def failed_results(self) -> list[TestExecutionResult]:
        return [r for r in self.test_results if r.status == TestStatus.FAILED]

    def merge(self, rerun: "ExecutionResults") -> "ExecutionResults":
        """Replace entries re-executed in ``rerun`` (matched by test_id)"""
        latest = {r.test_id: r for r in rerun.test_results}
        merged = [latest.get(r.test_id, r) for r in self.test_results]
        return ExecutionResults.from_test_results(merged)

    def subset(self, test_ids: Iterable[str]) -> "ExecutionResults":
        wanted = set(test_ids)
        return ExecutionResults.from_test_results(
            r for r in self.test_results if r.test_id in wanted
        )


# ============================================================
# Service metadata
# ============================================================

class HealthStatus(BaseModel):
    status: str
    version: str = ""
    timestamp: str = ""


class PlaywrightStatus(BaseModel):
    installed: bool
    version: Optional[str] = None


class UserStorySummary(BaseModel):
    """Story list entry served by the remote service"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str = ""
    completeness: int = 0
    status: str = "locked"
    dependencies: int = 0
    test_cases: int = Field(default=0, alias="testCases")
    test_scripts: int = Field(default=0, alias="testScripts")
