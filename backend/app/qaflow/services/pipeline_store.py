"""QAFlow - Pipeline Data Store

Session-scoped in-memory state shared by every consumer of the pipeline:
user stories, test cases, DOM mappings, generated scripts and their
execution results.

Every public operation runs under one re-entrant lock, so a logical
operation (e.g. appending a batch of test cases and linking them to their
story) is atomic with respect to all other operations. Readers receive deep
copies; store state is only ever changed through the mutators below.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from qaflow.models.pipeline_schemas import (
    AmbiguityClassification,
    DOMMappingResult,
    ExecutionResults,
    Priority,
    RuleAuditResult,
    TestabilityInsight,
    TestCase,
    TestCaseStatus,
    UserStoryInput,
)
from qaflow.models.store_schemas import (
    UNASSIGNED_STORY_ID,
    UNGROUPED,
    GeneratedScript,
    ImportedStory,
    TestCaseStats,
    TestCaseUpdate,
    UserStoryMetadata,
)

logger = logging.getLogger(__name__)

# stage numbers whose results live on the story record
STORY_RESULT_FIELDS = {
    1: "stage1_result",
    2: "stage2_result",
    3: "stage3_result",
    7: "stage7_result",
}


class StoreError(Exception):
    """Pipeline data store error"""


class DuplicateTestCaseError(StoreError):
    def __init__(self, test_id: str):
        self.test_id = test_id
        super().__init__(f"Test case already exists: {test_id}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_update(updates: Union[TestCaseUpdate, dict[str, Any]]) -> dict[str, Any]:
    if not isinstance(updates, TestCaseUpdate):
        updates = TestCaseUpdate.model_validate(updates)
    return updates.changes()


class PipelineDataStore:
    """In-memory pipeline artifact store (one per session)"""

    def __init__(self):
        self._lock = threading.RLock()
        self._test_cases: dict[str, TestCase] = {}  # insertion ordered
        self._user_stories: dict[str, UserStoryMetadata] = {}
        self._dom_mappings: dict[str, DOMMappingResult] = {}
        self._scripts: dict[str, GeneratedScript] = {}

    # ============================================================
    # Test cases
    # ============================================================

    def add_test_cases(
        self,
        test_cases: Iterable[TestCase],
        user_story_id: str,
        user_story: UserStoryInput,
    ) -> list[TestCase]:
        """Append a generated batch and link it to its story.

        Cases whose test_id is already stored are skipped; content duplicates
        (same name, different id) are kept.
        """
        test_cases = list(test_cases)
        with self._lock:
            added = []
            for tc in test_cases:
                if tc.test_id in self._test_cases:
                    logger.debug(f"Test case {tc.test_id} already stored, skipping")
                    continue
                self._test_cases[tc.test_id] = tc.model_copy(deep=True)
                added.append(tc)

            story = self._user_stories.get(user_story_id) or UserStoryMetadata(
                user_story_id=user_story_id,
                user_story=user_story,
            )
            linked = list(story.test_case_ids)
            for tc in test_cases:
                if tc.test_id not in linked:
                    linked.append(tc.test_id)
            self._user_stories[user_story_id] = story.model_copy(update={"test_case_ids": linked})

            logger.info(f"Added {len(added)}/{len(test_cases)} test cases to story {user_story_id}")
            return [tc.model_copy(deep=True) for tc in added]

    def add_manual_test_case(self, test_case: TestCase, user_story_id: str = UNASSIGNED_STORY_ID) -> TestCase:
        """Append one hand-written case; linked only if the story exists."""
        with self._lock:
            if test_case.test_id in self._test_cases:
                raise DuplicateTestCaseError(test_case.test_id)
            self._test_cases[test_case.test_id] = test_case.model_copy(deep=True)

            story = self._user_stories.get(user_story_id)
            if story is not None:
                self._user_stories[user_story_id] = story.model_copy(
                    update={"test_case_ids": [*story.test_case_ids, test_case.test_id]}
                )
            return test_case.model_copy(deep=True)

    def update_test_case(
        self,
        test_id: str,
        updates: Union[TestCaseUpdate, dict[str, Any]],
    ) -> Optional[TestCase]:
        """Merge fields into a stored case; unknown ids are a silent no-op (None)."""
        changes = _as_update(updates)
        with self._lock:
            current = self._test_cases.get(test_id)
            if current is None:
                logger.debug(f"update_test_case: {test_id} not found, ignoring")
                return None
            updated = current.model_copy(update=changes, deep=True)
            self._test_cases[test_id] = updated
            return updated.model_copy(deep=True)

    def bulk_update_test_cases(
        self,
        test_ids: Iterable[str],
        updates: Union[TestCaseUpdate, dict[str, Any]],
    ) -> list[str]:
        """Apply one update to many cases; returns the ids actually updated."""
        changes = _as_update(updates)
        with self._lock:
            updated_ids = []
            for test_id in dict.fromkeys(test_ids):
                current = self._test_cases.get(test_id)
                if current is None:
                    continue
                self._test_cases[test_id] = current.model_copy(update=changes, deep=True)
                updated_ids.append(test_id)
            return updated_ids

    def remove_test_case(self, test_id: str) -> bool:
        """Delete a case and unlink it from its story. Scripts are left in place."""
        with self._lock:
            if self._test_cases.pop(test_id, None) is None:
                return False
            for story_id, story in self._user_stories.items():
                if test_id in story.test_case_ids:
                    self._user_stories[story_id] = story.model_copy(
                        update={"test_case_ids": [t for t in story.test_case_ids if t != test_id]}
                    )
            return True

    def get_test_case(self, test_id: str) -> Optional[TestCase]:
        with self._lock:
            tc = self._test_cases.get(test_id)
            return tc.model_copy(deep=True) if tc else None

    def list_test_cases(self, user_story_id: Optional[str] = None) -> list[TestCase]:
        with self._lock:
            if user_story_id is None:
                cases = list(self._test_cases.values())
            else:
                story = self._user_stories.get(user_story_id)
                ids = story.test_case_ids if story else []
                cases = [self._test_cases[t] for t in ids if t in self._test_cases]
            return [tc.model_copy(deep=True) for tc in cases]

    def get_test_case_user_story(self, test_id: str) -> Optional[UserStoryMetadata]:
        with self._lock:
            for story in self._user_stories.values():
                if test_id in story.test_case_ids:
                    return story.model_copy(deep=True)
            return None

    def test_case_stats(self) -> TestCaseStats:
        with self._lock:
            cases = list(self._test_cases.values())
        total = len(cases)
        return TestCaseStats(
            total=total,
            draft=sum(1 for tc in cases if tc.status == TestCaseStatus.DRAFT),
            active=sum(1 for tc in cases if tc.status == TestCaseStatus.ACTIVE),
            deprecated=sum(1 for tc in cases if tc.status == TestCaseStatus.DEPRECATED),
            high_priority_draft=sum(
                1 for tc in cases
                if tc.status == TestCaseStatus.DRAFT and tc.priority in (Priority.CRITICAL, Priority.HIGH)
            ),
            average_automation=round(sum(tc.automation_level for tc in cases) / total) if total else 0,
        )

    def group_test_cases_by_story(self) -> dict[str, list[TestCase]]:
        """Cases keyed by owning story id; ownerless cases under UNGROUPED."""
        with self._lock:
            owner = {}
            for story_id, story in self._user_stories.items():
                for test_id in story.test_case_ids:
                    owner.setdefault(test_id, story_id)

            groups: dict[str, list[TestCase]] = {}
            for test_id, tc in self._test_cases.items():
                groups.setdefault(owner.get(test_id, UNGROUPED), []).append(tc.model_copy(deep=True))
            return groups

    # ============================================================
    # User stories
    # ============================================================

    def update_user_story_analysis(
        self,
        user_story_id: str,
        *,
        user_story: Optional[UserStoryInput] = None,
        stage1: Optional[TestabilityInsight] = None,
        stage2: Optional[RuleAuditResult] = None,
        stage3: Optional[AmbiguityClassification] = None,
        stage7: Optional[ExecutionResults] = None,
    ) -> UserStoryMetadata:
        """Upsert a story record; given results replace the stored ones."""
        changes: dict[str, Any] = {}
        if user_story is not None:
            changes["user_story"] = user_story
        for field_name, value in (
            ("stage1_result", stage1),
            ("stage2_result", stage2),
            ("stage3_result", stage3),
            ("stage7_result", stage7),
        ):
            if value is not None:
                changes[field_name] = value

        with self._lock:
            story = self._user_stories.get(user_story_id)
            if story is None:
                story = UserStoryMetadata(
                    user_story_id=user_story_id,
                    # placeholder until a real story input arrives
                    user_story=user_story or UserStoryInput(user_story=user_story_id),
                )
            story = story.model_copy(update=changes, deep=True)
            self._user_stories[user_story_id] = story
            return story.model_copy(deep=True)

    def clear_stage_result(self, user_story_id: str, stage: int) -> bool:
        field_name = STORY_RESULT_FIELDS.get(int(stage))
        if field_name is None:
            raise ValueError(f"Stage {stage} has no result on the story record")
        with self._lock:
            story = self._user_stories.get(user_story_id)
            if story is None:
                return False
            self._user_stories[user_story_id] = story.model_copy(update={field_name: None})
            return True

    def get_user_story(self, user_story_id: str) -> Optional[UserStoryMetadata]:
        with self._lock:
            story = self._user_stories.get(user_story_id)
            return story.model_copy(deep=True) if story else None

    def list_user_stories(self) -> list[UserStoryMetadata]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._user_stories.values()]

    def import_user_stories(self, stories: Iterable[ImportedStory]) -> list[UserStoryMetadata]:
        """Create records for tracker stories not yet known; returns the created ones."""
        with self._lock:
            created = []
            for imported in stories:
                if imported.key in self._user_stories:
                    continue
                story = UserStoryMetadata(
                    user_story_id=imported.key,
                    user_story=UserStoryInput(
                        user_story=imported.summary,
                        detailed_description=imported.description or None,
                    ),
                    source_key=imported.key,
                    source_status=imported.status or None,
                )
                self._user_stories[imported.key] = story
                created.append(story.model_copy(deep=True))
            logger.info(f"Imported {len(created)} user stories")
            return created

    # ============================================================
    # DOM mappings
    # ============================================================

    def add_dom_mapping(self, key: str, mapping: DOMMappingResult) -> None:
        """Set the mapping for a story (or test case) id; last write wins."""
        with self._lock:
            self._dom_mappings[key] = mapping.model_copy(deep=True)

    def get_dom_mapping(self, key: str) -> Optional[DOMMappingResult]:
        with self._lock:
            mapping = self._dom_mappings.get(key)
            return mapping.model_copy(deep=True) if mapping else None

    # ============================================================
    # Generated scripts & execution results
    # ============================================================

    def add_script(self, script: GeneratedScript) -> GeneratedScript:
        """Append a script; re-adding an existing id replaces it."""
        with self._lock:
            if script.id in self._scripts:
                script = script.model_copy(update={"updated_at": _utcnow()})
            self._scripts[script.id] = script.model_copy(deep=True)
            return script.model_copy(deep=True)

    def update_script(self, script_id: str, **fields: Any) -> Optional[GeneratedScript]:
        with self._lock:
            current = self._scripts.get(script_id)
            if current is None:
                return None
            updated = GeneratedScript.model_validate(
                {**current.model_dump(), **fields, "id": script_id, "updated_at": _utcnow()}
            )
            self._scripts[script_id] = updated
            return updated.model_copy(deep=True)

    def get_script(self, script_id: str) -> Optional[GeneratedScript]:
        with self._lock:
            script = self._scripts.get(script_id)
            return script.model_copy(deep=True) if script else None

    def list_scripts(self) -> list[GeneratedScript]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._scripts.values()]

    def get_scripts_by_test_case(self, test_case_id: str) -> list[GeneratedScript]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._scripts.values() if s.test_case_id == test_case_id]

    def get_scripts_for_story(self, user_story_id: str) -> list[GeneratedScript]:
        """Scripts whose test case belongs to the story (or is keyed by the story id)."""
        with self._lock:
            story = self._user_stories.get(user_story_id)
            owned = set(story.test_case_ids) if story else set()
            return [
                s.model_copy(deep=True) for s in self._scripts.values()
                if s.test_case_id == user_story_id or s.test_case_id in owned
            ]

    def add_execution_result(self, script_id: str, result: ExecutionResults) -> Optional[GeneratedScript]:
        return self.update_script(script_id, execution_result=result)

    def get_execution_result(self, script_id: str) -> Optional[ExecutionResults]:
        with self._lock:
            script = self._scripts.get(script_id)
            if script is None or script.execution_result is None:
                return None
            return script.execution_result.model_copy(deep=True)
