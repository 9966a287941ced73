"""QAFlow - Stage State Machine

Pipeline stages, completion events and the transition table
``(stage, event) -> next stage``. Pairs missing from the table are illegal.

Flow:
    TESTABILITY -> RULE_GROUNDING -> AMBIGUITY -> TEST_GENERATION
        -> DOM_MAPPING -> SCRIPT_GENERATION -> EXECUTION (terminal)

    TESTABILITY_BLOCKED / RULES_INCOMPLETE keep the pipeline where it is,
    REFINED re-enters RULE_GROUNDING, OVERRIDE forces a blocked stage 1/2 forward.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class IllegalTransitionError(Exception):
    """No transition defined for (stage, event)"""

    def __init__(self, stage: "Stage", event: "StageEvent"):
        self.stage = stage
        self.event = event
        super().__init__(f"Illegal transition: {stage.name} --{event.value}-->")


class Stage(IntEnum):
    TESTABILITY = 1
    RULE_GROUNDING = 2
    AMBIGUITY = 3
    TEST_GENERATION = 4
    DOM_MAPPING = 5
    SCRIPT_GENERATION = 6
    EXECUTION = 7

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]

    @property
    def step_name(self) -> str:
        """Activity log step name"""
        return STAGE_STEP_NAMES[self]


STAGE_LABELS = {
    Stage.TESTABILITY: "Testability",
    Stage.RULE_GROUNDING: "Rule Grounding",
    Stage.AMBIGUITY: "Ambiguity",
    Stage.TEST_GENERATION: "Test Cases",
    Stage.DOM_MAPPING: "DOM Mapping",
    Stage.SCRIPT_GENERATION: "Scripts",
    Stage.EXECUTION: "Execution",
}

STAGE_STEP_NAMES = {
    Stage.TESTABILITY: "stage1_testability",
    Stage.RULE_GROUNDING: "stage2_rules",
    Stage.AMBIGUITY: "stage3_ambiguity",
    Stage.TEST_GENERATION: "stage4_test_generation",
    Stage.DOM_MAPPING: "stage5_dom_mapping",
    Stage.SCRIPT_GENERATION: "stage6_script_generation",
    Stage.EXECUTION: "stage7_execution",
}


class StageEvent(str, Enum):
    TESTABILITY_READY = "testability_ready"
    TESTABILITY_BLOCKED = "testability_blocked"
    RULES_COMPLETE = "rules_complete"
    RULES_INCOMPLETE = "rules_incomplete"
    REFINED = "refined"
    OVERRIDE = "override"
    CLASSIFIED = "classified"
    TEST_CASES_GENERATED = "test_cases_generated"
    DOM_MAPPED = "dom_mapped"
    SCRIPTS_GENERATED = "scripts_generated"
    EXECUTED = "executed"


TRANSITIONS: dict[tuple[Stage, StageEvent], Stage] = {
    (Stage.TESTABILITY, StageEvent.TESTABILITY_READY): Stage.RULE_GROUNDING,
    (Stage.TESTABILITY, StageEvent.TESTABILITY_BLOCKED): Stage.TESTABILITY,
    (Stage.TESTABILITY, StageEvent.OVERRIDE): Stage.RULE_GROUNDING,
    (Stage.RULE_GROUNDING, StageEvent.RULES_COMPLETE): Stage.AMBIGUITY,
    (Stage.RULE_GROUNDING, StageEvent.RULES_INCOMPLETE): Stage.RULE_GROUNDING,
    (Stage.RULE_GROUNDING, StageEvent.REFINED): Stage.RULE_GROUNDING,
    (Stage.RULE_GROUNDING, StageEvent.OVERRIDE): Stage.AMBIGUITY,
    (Stage.AMBIGUITY, StageEvent.CLASSIFIED): Stage.TEST_GENERATION,
    (Stage.TEST_GENERATION, StageEvent.TEST_CASES_GENERATED): Stage.DOM_MAPPING,
    (Stage.DOM_MAPPING, StageEvent.DOM_MAPPED): Stage.SCRIPT_GENERATION,
    (Stage.SCRIPT_GENERATION, StageEvent.SCRIPTS_GENERATED): Stage.EXECUTION,
    (Stage.EXECUTION, StageEvent.EXECUTED): Stage.EXECUTION,
}


def next_stage(stage: Stage, event: StageEvent) -> Stage:
    """Look up the transition table.

    Raises:
        IllegalTransitionError: (stage, event) is not a defined transition
    """
    try:
        return TRANSITIONS[(Stage(stage), StageEvent(event))]
    except KeyError:
        raise IllegalTransitionError(Stage(stage), StageEvent(event)) from None


class StageStatus(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"


@dataclass(frozen=True)
class StageWindow:
    """Inclusive range of stages a pipeline view can display and drive."""

    start: Stage = Stage.TESTABILITY
    end: Stage = Stage.EXECUTION

    def __post_init__(self):
        # accept plain ints
        object.__setattr__(self, "start", Stage(self.start))
        object.__setattr__(self, "end", Stage(self.end))
        if self.start > self.end:
            raise ValueError(f"Invalid stage range: [{int(self.start)}, {int(self.end)}]")

    @classmethod
    def from_range(cls, active_range: tuple[int, int] | list[int] | None) -> "StageWindow":
        if active_range is None:
            return cls()
        if len(active_range) != 2:
            raise ValueError("active_range must be [start, end]")
        return cls(Stage(active_range[0]), Stage(active_range[1]))

    def contains(self, stage: int) -> bool:
        return self.start <= stage <= self.end

    @property
    def visible_stages(self) -> list[Stage]:
        return [s for s in Stage if self.contains(s)]

    def progress(self, current: int) -> float:
        """Completion of the window, 0.0 - 1.0, relative to the visible stages."""
        if self.end == self.start:
            return 1.0 if current >= self.start else 0.0
        fraction = (current - self.start) / (self.end - self.start)
        return min(max(fraction, 0.0), 1.0)

    def progress_percent(self, current: int) -> int:
        return round(self.progress(current) * 100)

    def stage_status(self, stage: int, current: int) -> StageStatus:
        if stage < current:
            return StageStatus.COMPLETED
        if stage == current:
            return StageStatus.CURRENT
        return StageStatus.PENDING
