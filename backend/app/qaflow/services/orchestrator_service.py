"""QAFlow - Stage Orchestrator

Drives one user story through the seven pipeline stages.

Design decisions:
- Dependency injection: store and API client required, activity recorder optional (testable)
- Return type: StageOutcome (domain object, no HTTP concepts); no exception leaves a stage run
- Gating: stage N+1 is only reachable once stage N advanced the pointer; re-runs never regress it
- One run at a time per story: a busy flag rejects overlapping runs, nothing is cancelled
- Failed remote calls leave every stored result untouched; retry is up to the caller
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from pydantic import ValidationError

from qaflow.core.config import settings
from qaflow.models.pipeline_schemas import (
    AmbiguityClassification,
    AmbiguityClassificationInput,
    Clarification,
    DOMMappingInput,
    DOMMappingResult,
    ExecuteTestsInput,
    ExecutionResults,
    PlaywrightGenerationInput,
    PlaywrightScripts,
    PlaywrightTest,
    RequirementRefinementInput,
    RuleAuditResult,
    RuleGroundingInput,
    TestabilityInsight,
    TestCase,
    TestCaseGenerationInput,
    TestScenarios,
    UserStoryInput,
)
from qaflow.models.store_schemas import GeneratedScript
from qaflow.services.pipeline_client import PipelineAPIError
from qaflow.services.pipeline_store import PipelineDataStore
from qaflow.services.stage_machine import (
    IllegalTransitionError,
    Stage,
    StageEvent,
    StageWindow,
    next_stage,
)

logger = logging.getLogger(__name__)

PIPELINE_STEP = "pipeline_step"
REFINEMENT_STEP = "stage2_refinement"


class OrchestratorError(Exception):
    """Stage run rejected before or around the remote call"""
    kind = "orchestrator"


class StageValidationError(OrchestratorError):
    """Input contract of the stage not met"""
    kind = "validation"


class StageNotReachableError(OrchestratorError):
    """Stage outside the active range or ahead of the current stage"""
    kind = "not_reachable"


class StageBusyError(OrchestratorError):
    """Another stage run is still in flight"""
    kind = "busy"


REMOTE_ERROR_KIND = "remote"


class ActivityRecorderLike(Protocol):
    def record(self, step_name: str, activity_type: str, details: Any, **options: Any) -> Any: ...


@dataclass(frozen=True)
class StageOutcome:
    """Result of one stage operation."""
    stage: Stage
    success: bool
    current_stage: Stage
    advanced: bool = False
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class PipelineState:
    """Per-story pipeline state held by the orchestrator."""
    current_stage: Stage
    user_story_input: Optional[UserStoryInput] = None
    stage1_result: Optional[TestabilityInsight] = None
    stage2_result: Optional[RuleAuditResult] = None
    stage3_result: Optional[AmbiguityClassification] = None
    stage4_result: Optional[TestScenarios] = None
    stage5_result: Optional[DOMMappingResult] = None
    stage6_result: Optional[PlaywrightScripts] = None
    stage7_result: Optional[ExecutionResults] = None
    iteration_count: int = 0
    range_complete: bool = False
    script_ids: list[str] = field(default_factory=list)


# an action performs the stage's work and reports the completion event
StageAction = Callable[[], Awaitable[tuple[Any, StageEvent]]]


class StageOrchestrator:
    """Seven-stage pipeline coordinator for a single user story.

    Dependency injection:
    - store: session PipelineDataStore (required)
    - api: PipelineAPIClient or any object with the same coroutines (required)
    - recorder: optional ActivityRecorder; writes are best-effort
    """

    def __init__(
        self,
        user_story_id: str,
        store: PipelineDataStore,
        api: Any,
        *,
        recorder: Optional[ActivityRecorderLike] = None,
        active_range: Optional[tuple[int, int]] = None,
        standalone_stage: Optional[int] = None,
        initial_data: Optional[UserStoryInput] = None,
        target_url: Optional[str] = None,
    ):
        self.user_story_id = user_story_id
        self._store = store
        self._api = api
        self._recorder = recorder
        self.window = StageWindow.from_range(active_range)
        self.standalone_stage = Stage(standalone_stage) if standalone_stage else None
        if self.standalone_stage and not self.window.contains(self.standalone_stage):
            raise ValueError(f"Standalone stage {int(self.standalone_stage)} is outside the active range")
        self.initial_data = initial_data
        self.target_url = target_url or settings.DEFAULT_TARGET_URL
        self._busy = False

        self.state = PipelineState(current_stage=self.standalone_stage or self.window.start)

        if self.standalone_stage in (Stage.SCRIPT_GENERATION, Stage.EXECUTION):
            self.hydrate()

    # ============================================================
    # Read-only views
    # ============================================================

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def effective_stage(self) -> Stage:
        if self.standalone_stage:
            return Stage(max(self.state.current_stage, self.standalone_stage))
        return self.state.current_stage

    def progress_percent(self) -> int:
        return self.window.progress_percent(self.effective_stage)

    def stage_statuses(self) -> list[dict[str, Any]]:
        current = self.effective_stage
        return [
            {"id": int(s), "label": s.label, "status": self.window.stage_status(s, current).value}
            for s in self.window.visible_stages
        ]

    def snapshot(self) -> dict[str, Any]:
        def dump(model):
            return model.model_dump(mode="json", by_alias=True) if model is not None else None

        state = self.state
        return {
            "user_story_id": self.user_story_id,
            "current_stage": int(self.effective_stage),
            "active_range": [int(self.window.start), int(self.window.end)],
            "standalone_stage": int(self.standalone_stage) if self.standalone_stage else None,
            "progress_percent": self.progress_percent(),
            "range_complete": state.range_complete,
            "iteration_count": state.iteration_count,
            "busy": self._busy,
            "stages": self.stage_statuses(),
            "user_story_input": dump(state.user_story_input),
            "results": {
                "stage1": dump(state.stage1_result),
                "stage2": dump(state.stage2_result),
                "stage3": dump(state.stage3_result),
                "stage4": dump(state.stage4_result),
                "stage5": dump(state.stage5_result),
                "stage6": dump(state.stage6_result),
                "stage7": dump(state.stage7_result),
            },
        }

    # ============================================================
    # Hydration
    # ============================================================

    def hydrate(self) -> None:
        """Rebuild stage state from the store (standalone stage 6/7 entry)."""
        store = self._store
        story = store.get_user_story(self.user_story_id) or store.get_test_case_user_story(self.user_story_id)

        owned = set(story.test_case_ids) if story else set()
        test_cases = [
            tc for tc in store.list_test_cases()
            if tc.test_id == self.user_story_id or tc.test_id in owned
        ]
        if test_cases:
            self.state.stage4_result = TestScenarios(
                test_cases=test_cases,
                summary=f"Recovered {len(test_cases)} test cases for {self.user_story_id}",
            )
            mapping = store.get_dom_mapping(self.user_story_id) or store.get_dom_mapping(test_cases[0].test_id)
            if mapping is not None:
                self.state.stage5_result = mapping

        if story is not None:
            self.state.user_story_input = story.user_story
            self.state.stage1_result = story.stage1_result
            self.state.stage2_result = story.stage2_result
            self.state.stage3_result = story.stage3_result
            self.state.stage7_result = story.stage7_result

        scripts = store.get_scripts_for_story(story.user_story_id if story else self.user_story_id)
        if not scripts and story is not None and story.user_story_id != self.user_story_id:
            scripts = store.get_scripts_for_story(self.user_story_id)
        logger.info(f"Hydrating {self.user_story_id}: {len(test_cases)} test cases, {len(scripts)} scripts")
        if scripts:
            self.state.script_ids = [s.id for s in scripts]
            self.state.stage6_result = PlaywrightScripts(
                scripts=[s.script for s in scripts],
                setup_instructions=["Run naturally via the pipeline executor."],
                summary=f"Ready to execute {len(scripts)} scripts.",
            )
        elif self.standalone_stage == Stage.EXECUTION:
            logger.warning(f"No scripts found while hydrating {self.user_story_id} for execution")

    # ============================================================
    # Stage runner
    # ============================================================

    def _check_reachable(self, stage: Stage) -> None:
        if not self.window.contains(stage):
            raise StageNotReachableError(
                f"Stage {int(stage)} is outside the active range "
                f"[{int(self.window.start)}, {int(self.window.end)}]"
            )
        if self.standalone_stage and stage < self.standalone_stage:
            raise StageNotReachableError(
                f"Stage {int(stage)} precedes standalone stage {int(self.standalone_stage)}"
            )
        if stage > self.effective_stage:
            raise StageNotReachableError(
                f"Stage {int(stage)} is not reachable yet (current stage {int(self.effective_stage)})"
            )

    def _failure(self, stage: Stage, error: Exception, kind: str) -> StageOutcome:
        return StageOutcome(
            stage=stage,
            success=False,
            current_stage=self.effective_stage,
            error=str(error),
            error_kind=kind,
        )

    def _apply(self, stage: Stage, event: StageEvent) -> bool:
        """Apply a completion event; returns True when the pointer moved forward."""
        target = next_stage(stage, event)
        forward = target > stage or event == StageEvent.EXECUTED
        if forward and stage == self.window.end:
            self.state.range_complete = True
        if not self.window.contains(target):
            target = stage

        before = self.state.current_stage
        self.state.current_stage = Stage(max(before, target))
        if self.state.current_stage != before:
            logger.info(f"[{self.user_story_id}] stage {int(before)} -> {int(self.state.current_stage)} ({event.value})")
        return self.state.current_stage > before

    async def _run_stage(self, stage: Stage, action: StageAction) -> StageOutcome:
        if self._busy:
            return self._failure(stage, StageBusyError("A stage run is already in progress"), StageBusyError.kind)
        try:
            self._check_reachable(stage)
        except StageNotReachableError as e:
            return self._failure(stage, e, e.kind)

        self._busy = True
        try:
            result, event = await action()
        except OrchestratorError as e:
            logger.info(f"[{self.user_story_id}] stage {int(stage)} rejected: {e}")
            return self._failure(stage, e, e.kind)
        except PipelineAPIError as e:
            logger.error(f"[{self.user_story_id}] stage {int(stage)} failed: {e}")
            return self._failure(stage, e, REMOTE_ERROR_KIND)
        except ValidationError as e:
            logger.warning(f"[{self.user_story_id}] stage {int(stage)} produced invalid data: {e}")
            invalid = StageValidationError(f"Invalid stage data: {e.error_count()} error(s)")
            return self._failure(stage, invalid, invalid.kind)
        finally:
            self._busy = False

        advanced = self._apply(stage, event)
        return StageOutcome(
            stage=stage,
            success=True,
            current_stage=self.effective_stage,
            advanced=advanced,
            result=result,
        )

    def _record(self, step_name: str, result: Any) -> None:
        if self._recorder is None:
            return
        try:
            self._recorder.record(
                step_name,
                PIPELINE_STEP,
                result,
                session_id=self.user_story_id,
                step_type=step_name,
                payload=result,
            )
        except Exception as e:
            logger.warning(f"Activity log write failed for {step_name}: {e}")

    def _require_story_input(self) -> UserStoryInput:
        """Story input from stage 1, else caller-supplied data, else the stored story record."""
        if self.state.user_story_input is None:
            stored = self._store.get_user_story(self.user_story_id)
            story_input = self.initial_data or (stored.user_story if stored else None)
            if story_input is None:
                raise StageValidationError("User story input is required; run stage 1 first")
            self.state.user_story_input = story_input
        return self.state.user_story_input

    def _current_test_cases(self) -> list[TestCase]:
        if self.state.stage4_result and self.state.stage4_result.test_cases:
            return self.state.stage4_result.test_cases
        return self._store.list_test_cases(self.user_story_id)

    def _current_scripts(self) -> list[PlaywrightTest]:
        if self.state.stage6_result and self.state.stage6_result.scripts:
            return self.state.stage6_result.scripts
        return [s.script for s in self._store.get_scripts_for_story(self.user_story_id)]

    # ============================================================
    # Stage 1: Testability
    # ============================================================

    async def run_testability(self, story: Optional[UserStoryInput] = None) -> StageOutcome:
        async def action():
            story_input = story or self.state.user_story_input or self.initial_data
            if story_input is None:
                raise StageValidationError("User story text is required")

            result = await self._api.analyze_testability(story_input)

            self.state.stage1_result = result
            self.state.user_story_input = story_input
            self._store.update_user_story_analysis(self.user_story_id, stage1=result, user_story=story_input)
            self._record(Stage.TESTABILITY.step_name, result)

            event = StageEvent.TESTABILITY_READY if result.is_test_ready else StageEvent.TESTABILITY_BLOCKED
            return result, event

        return await self._run_stage(Stage.TESTABILITY, action)

    # ============================================================
    # Stage 2: Rule grounding (+ refinement loop)
    # ============================================================

    async def run_rule_grounding(self) -> StageOutcome:
        async def action():
            story_input = self._require_story_input()
            behaviors = self.state.stage1_result.explicitly_stated_behaviors if self.state.stage1_result else []

            result = await self._api.analyze_rule_grounding(
                RuleGroundingInput(**story_input.model_dump(), stage_1_behaviors=behaviors)
            )

            self.state.stage2_result = result
            self._store.update_user_story_analysis(self.user_story_id, stage2=result)
            self._record(Stage.RULE_GROUNDING.step_name, result)

            event = StageEvent.RULES_COMPLETE if result.is_rule_complete else StageEvent.RULES_INCOMPLETE
            return result, event

        return await self._run_stage(Stage.RULE_GROUNDING, action)

    async def refine_requirements(
        self,
        answers: dict[str, str] | Iterable[Clarification],
    ) -> StageOutcome:
        """Refine the story with clarification answers, then re-run stage 2 once.

        Only non-empty answers are sent. Returns the stage 2 re-run outcome, or
        the refinement failure (in which case stage 2 is not re-run).
        """
        if isinstance(answers, dict):
            pairs = [Clarification(question=q, answer=a or "") for q, a in answers.items()]
        else:
            pairs = list(answers)
        clarifications = [
            Clarification(question=c.question, answer=c.answer.strip())
            for c in pairs
            if c.answer and c.answer.strip()
        ]

        async def action():
            story_input = self._require_story_input()
            if self.state.stage2_result is None:
                raise StageValidationError("Rule grounding must run before refinement")
            if not clarifications:
                raise StageValidationError("At least one non-empty clarification answer is required")

            result = await self._api.refine_requirements(
                RequirementRefinementInput(**story_input.model_dump(), clarifications=clarifications)
            )

            refined = result.to_story_input()
            self.state.user_story_input = refined
            self.state.stage2_result = None
            self.state.iteration_count += 1
            self._store.update_user_story_analysis(self.user_story_id, user_story=refined)
            self._store.clear_stage_result(self.user_story_id, Stage.RULE_GROUNDING)
            self._record(REFINEMENT_STEP, result)
            return result, StageEvent.REFINED

        refinement = await self._run_stage(Stage.RULE_GROUNDING, action)
        if not refinement.success:
            return refinement
        return await self.run_rule_grounding()

    async def proceed_anyway(self) -> StageOutcome:
        """Move past a blocked stage 1 or 2 on explicit user request."""
        stage = self.effective_stage

        async def action():
            has_result = {
                Stage.TESTABILITY: self.state.stage1_result,
                Stage.RULE_GROUNDING: self.state.stage2_result,
            }.get(stage)
            if has_result is None:
                raise StageValidationError(f"Stage {int(stage)} has no result to proceed from")
            return has_result, StageEvent.OVERRIDE

        try:
            next_stage(stage, StageEvent.OVERRIDE)
        except IllegalTransitionError as e:
            return self._failure(stage, e, StageValidationError.kind)
        return await self._run_stage(stage, action)

    # ============================================================
    # Stage 3: Ambiguity classification
    # ============================================================

    async def run_ambiguity(self) -> StageOutcome:
        async def action():
            story_input = self._require_story_input()
            if self.state.stage2_result is None:
                raise StageValidationError("Rule grounding result is required")

            result = await self._api.classify_ambiguities(
                AmbiguityClassificationInput(
                    **story_input.model_dump(),
                    clarification_questions=self.state.stage2_result.clarification_questions,
                )
            )

            self.state.stage3_result = result
            self._store.update_user_story_analysis(self.user_story_id, stage3=result)
            self._record(Stage.AMBIGUITY.step_name, result)
            return result, StageEvent.CLASSIFIED

        return await self._run_stage(Stage.AMBIGUITY, action)

    def record_resolution_answers(self, answers: dict[str, str]) -> StageOutcome:
        """Attach stakeholder answers to classified clarification items."""
        stage = Stage.AMBIGUITY
        if self._busy:
            return self._failure(stage, StageBusyError("A stage run is already in progress"), StageBusyError.kind)
        if self.state.stage3_result is None:
            return self._failure(stage, StageValidationError("No classification to answer"), StageValidationError.kind)

        items = [
            item.model_copy(update={"resolution_answer": answers[item.question].strip() or None})
            if item.question in answers else item
            for item in self.state.stage3_result.clarification_items
        ]
        result = self.state.stage3_result.model_copy(update={"clarification_items": items})
        self.state.stage3_result = result
        self._store.update_user_story_analysis(self.user_story_id, stage3=result)
        return StageOutcome(stage=stage, success=True, current_stage=self.effective_stage, result=result)

    # ============================================================
    # Stage 4: Test case generation
    # ============================================================

    async def run_test_generation(self) -> StageOutcome:
        async def action():
            story_input = self._require_story_input()
            state = self.state

            result = await self._api.generate_test_cases(
                TestCaseGenerationInput(
                    user_story=story_input.user_story,
                    explicit_rules=state.stage2_result.explicit_rules if state.stage2_result else [],
                    explicit_behaviors=state.stage1_result.explicitly_stated_behaviors if state.stage1_result else [],
                    resolved_clarifications=state.stage3_result.resolved_clarifications() if state.stage3_result else None,
                    enriched_context=story_input.detailed_description,
                )
            )

            state.stage4_result = result
            self._store.add_test_cases(result.test_cases, self.user_story_id, story_input)
            self._record(Stage.TEST_GENERATION.step_name, result)
            return result, StageEvent.TEST_CASES_GENERATED

        return await self._run_stage(Stage.TEST_GENERATION, action)

    # ============================================================
    # Stage 5: DOM mapping
    # ============================================================

    async def run_dom_mapping(self, url: Optional[str] = None) -> StageOutcome:
        async def action():
            test_cases = self._current_test_cases()
            if not test_cases:
                raise StageValidationError("At least one test case is required for DOM mapping")

            result = await self._api.map_dom(
                DOMMappingInput(url=url or self.target_url, test_case_ids=[tc.test_id for tc in test_cases])
            )

            self.state.stage5_result = result
            self._store.add_dom_mapping(self.user_story_id, result)
            self._record(Stage.DOM_MAPPING.step_name, result)
            return result, StageEvent.DOM_MAPPED

        return await self._run_stage(Stage.DOM_MAPPING, action)

    # ============================================================
    # Stage 6: Script generation
    # ============================================================

    async def run_script_generation(self, base_url: Optional[str] = None) -> StageOutcome:
        async def action():
            test_cases = self._current_test_cases()
            if not test_cases:
                raise StageValidationError("At least one test case is required for script generation")
            state = self.state
            mapping = state.stage5_result or self._store.get_dom_mapping(self.user_story_id)

            result = await self._api.generate_playwright(
                PlaywrightGenerationInput(
                    user_story=state.user_story_input.user_story if state.user_story_input else "",
                    test_cases=[
                        {"test_id": tc.test_id, "name": tc.name, "steps": tc.steps}
                        for tc in test_cases
                    ],
                    dom_elements=[
                        {"id": e.id, "selector": e.selector, "xpath": e.xpath or ""}
                        for e in (mapping.elements if mapping else [])
                    ],
                    explicit_rules=state.stage2_result.explicit_rules if state.stage2_result else [],
                    base_url=base_url or self.target_url,
                )
            )

            state.stage6_result = result
            created_ms = int(time.time() * 1000)
            state.script_ids = []
            for test in result.scripts:
                stored = self._store.add_script(
                    GeneratedScript(
                        id=f"script-{test.test_id}-{created_ms}",
                        test_case_id=test.test_id,
                        test_case_name=test.test_name,
                        script=test,
                        dom_mapping=mapping,
                    )
                )
                state.script_ids.append(stored.id)
            self._record(Stage.SCRIPT_GENERATION.step_name, result)
            return result, StageEvent.SCRIPTS_GENERATED

        return await self._run_stage(Stage.SCRIPT_GENERATION, action)

    # ============================================================
    # Stage 7: Execution
    # ============================================================

    def _attach_execution(self, result: ExecutionResults) -> None:
        self.state.stage7_result = result
        self._store.update_user_story_analysis(self.user_story_id, stage7=result)

        executed = {r.test_id for r in result.test_results}
        scripts = [self._store.get_script(sid) for sid in self.state.script_ids]
        scripts = [s for s in scripts if s is not None] or self._store.get_scripts_for_story(self.user_story_id)
        for script in scripts:
            if script.script.test_id in executed:
                self._store.add_execution_result(script.id, result.subset([script.script.test_id]))

    async def run_execution(self, base_url: Optional[str] = None) -> StageOutcome:
        async def action():
            scripts = self._current_scripts()
            if not scripts:
                raise StageValidationError("At least one generated script is required for execution")

            result = await self._api.execute_tests(
                ExecuteTestsInput(scripts=scripts, base_url=base_url or self.target_url)
            )

            self._attach_execution(result)
            self._record(Stage.EXECUTION.step_name, result)
            return result, StageEvent.EXECUTED

        return await self._run_stage(Stage.EXECUTION, action)

    async def rerun_failed(self, base_url: Optional[str] = None) -> StageOutcome:
        """Re-execute only the failed tests and merge them into the last results."""
        async def action():
            previous = self.state.stage7_result
            if previous is None:
                raise StageValidationError("No execution results to re-run")
            failed_ids = [r.test_id for r in previous.failed_results()]
            if not failed_ids:
                raise StageValidationError("No failed tests to re-run")

            by_id = {s.test_id: s for s in self._current_scripts()}
            scripts = [
                by_id.get(test_id) or PlaywrightTest(test_id=test_id, test_name=test_id, code="")
                for test_id in failed_ids
            ]

            rerun = await self._api.execute_tests(
                ExecuteTestsInput(scripts=scripts, base_url=base_url or self.target_url)
            )

            merged = previous.merge(rerun)
            self._attach_execution(merged)
            self._record(Stage.EXECUTION.step_name, merged)
            return merged, StageEvent.EXECUTED

        return await self._run_stage(Stage.EXECUTION, action)
