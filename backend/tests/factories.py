"""Canned pipeline service responses shared by the test suites."""
from unittest.mock import AsyncMock, MagicMock

from qaflow.models.pipeline_schemas import (
    AmbiguityClassification,
    ClarificationItem,
    DOMElement,
    DOMMappingResult,
    ExecutionResults,
    PlaywrightScripts,
    PlaywrightTest,
    RequirementRefinementResult,
    RuleAuditResult,
    RuleStatus,
    TestabilityInsight,
    TestabilityStatus,
    TestCase,
    TestExecutionResult,
    TestScenarios,
    TestStatus,
    UserStoryInput,
)

STORY_TEXT = "As a shopper I want to log in so that I can see my orders"


def story_input(text: str = STORY_TEXT) -> UserStoryInput:
    return UserStoryInput(user_story=text, acceptance_criteria="Valid credentials open the dashboard")


def testability(ready: bool = True) -> TestabilityInsight:
    return TestabilityInsight(
        explicitly_stated_behaviors=["User logs in with email and password"],
        testability_status=TestabilityStatus.TEST_READY if ready else TestabilityStatus.NEEDS_CLARIFICATION,
        clarification_questions=[] if ready else ["What happens after 3 failed attempts?"],
    )


def rule_audit(complete: bool = True) -> RuleAuditResult:
    return RuleAuditResult(
        explicit_rules=["Password must be at least 8 characters"],
        rule_status=RuleStatus.RULE_COMPLETE if complete else RuleStatus.RULE_GAPS,
        clarification_questions=[] if complete else ["Is the account locked after failed attempts?"],
    )


def refinement(text: str = "Refined: shopper logs in, locked after 3 failures") -> RequirementRefinementResult:
    return RequirementRefinementResult(
        updated_user_story=text,
        updated_acceptance_criteria="Account locks after 3 failed attempts",
        change_summary="Added lockout rule",
    )


def ambiguity() -> AmbiguityClassification:
    return AmbiguityClassification(
        clarification_items=[
            ClarificationItem(
                question="Is the account locked after failed attempts?",
                ambiguity_type="Undefined rule",
                testing_impact="Blocked",
                resolution_owner="Product",
                mandatory=True,
            ),
            ClarificationItem(
                question="Which browsers are supported?",
                ambiguity_type="Unclear scope",
                testing_impact="Partially blocked",
                resolution_owner="Tech",
            ),
        ]
    )


def make_test_case(test_id: str, **fields) -> TestCase:
    return TestCase(
        test_id=test_id,
        name=fields.pop("name", f"Login scenario {test_id}"),
        steps=fields.pop("steps", ["Open login page", "Submit credentials"]),
        **fields,
    )


def scenarios(*test_ids: str) -> TestScenarios:
    test_ids = test_ids or ("TC-001", "TC-002")
    return TestScenarios(test_cases=[make_test_case(t) for t in test_ids], summary=f"{len(test_ids)} cases")


def dom_mapping(url: str = "https://app.example.com/login") -> DOMMappingResult:
    return DOMMappingResult(
        url=url,
        elements=[
            DOMElement(id="email", tag="input", selector="#email"),
            DOMElement(id="submit", tag="button", selector="button[type=submit]", xpath="//button"),
        ],
        timestamp="2026-01-01T00:00:00Z",
    )


def playwright_scripts(*test_ids: str) -> PlaywrightScripts:
    test_ids = test_ids or ("TC-001", "TC-002")
    return PlaywrightScripts(
        scripts=[
            PlaywrightTest(test_id=t, test_name=f"test_{t.lower()}", code=f"test('{t}', async () => {{}});")
            for t in test_ids
        ],
        summary="generated",
    )


def execution(statuses: dict) -> ExecutionResults:
    return ExecutionResults.from_test_results(
        TestExecutionResult(test_id=t, status=TestStatus(s), duration_ms=120) for t, s in statuses.items()
    )


def make_api(**overrides) -> MagicMock:
    """Remote client double: every stage coroutine returns a happy-path result."""
    api = MagicMock()
    api.analyze_testability = AsyncMock(return_value=testability())
    api.analyze_rule_grounding = AsyncMock(return_value=rule_audit())
    api.refine_requirements = AsyncMock(return_value=refinement())
    api.classify_ambiguities = AsyncMock(return_value=ambiguity())
    api.generate_test_cases = AsyncMock(return_value=scenarios())
    api.map_dom = AsyncMock(return_value=dom_mapping())
    api.generate_playwright = AsyncMock(return_value=playwright_scripts())
    api.execute_tests = AsyncMock(return_value=execution({"TC-001": "passed", "TC-002": "failed"}))
    api.aclose = AsyncMock()
    for name, mock in overrides.items():
        setattr(api, name, mock)
    return api
