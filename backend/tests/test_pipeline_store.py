"""Tests for PipelineDataStore

Story linking, update semantics, script/result bookkeeping and snapshot isolation.
"""
import threading

import pytest

from qaflow.models.pipeline_schemas import Priority, TestCaseStatus, UserStoryInput
from qaflow.models.store_schemas import (
    UNASSIGNED_STORY_ID,
    UNGROUPED,
    GeneratedScript,
    ImportedStory,
    TestCaseUpdate,
)
from qaflow.services.pipeline_store import DuplicateTestCaseError, PipelineDataStore

from factories import dom_mapping, execution, make_test_case, playwright_scripts, rule_audit, story_input, testability


@pytest.fixture
def store():
    return PipelineDataStore()


def _script(script_id: str, test_id: str) -> GeneratedScript:
    test = playwright_scripts(test_id).scripts[0]
    return GeneratedScript(id=script_id, test_case_id=test_id, test_case_name=test.test_name, script=test)


class TestAddTestCases:

    def test_creates_story_and_links_ids(self, store):
        added = store.add_test_cases([make_test_case("TC-1"), make_test_case("TC-2")], "US-1", story_input())

        assert [tc.test_id for tc in added] == ["TC-1", "TC-2"]
        story = store.get_user_story("US-1")
        assert story.test_case_ids == ["TC-1", "TC-2"]
        assert story.user_story.user_story == story_input().user_story

    def test_every_linked_id_resolves(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())
        store.add_test_cases([make_test_case("TC-2"), make_test_case("TC-3")], "US-1", story_input())

        for story in store.list_user_stories():
            for test_id in story.test_case_ids:
                assert store.get_test_case(test_id) is not None

    def test_existing_ids_are_not_duplicated(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())
        added = store.add_test_cases([make_test_case("TC-1", name="changed"), make_test_case("TC-2")], "US-1", story_input())

        assert [tc.test_id for tc in added] == ["TC-2"]
        assert store.get_test_case("TC-1").name == "Login scenario TC-1"
        assert store.get_user_story("US-1").test_case_ids == ["TC-1", "TC-2"]
        assert len(store.list_test_cases()) == 2

    def test_same_content_different_ids_kept(self, store):
        store.add_test_cases(
            [make_test_case("TC-1", name="same"), make_test_case("TC-2", name="same")], "US-1", story_input()
        )
        assert len(store.list_test_cases("US-1")) == 2

    def test_existing_story_keeps_its_results(self, store):
        store.update_user_story_analysis("US-1", user_story=story_input(), stage1=testability())
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input("other text"))

        story = store.get_user_story("US-1")
        assert story.stage1_result is not None
        assert story.user_story.user_story == story_input().user_story


class TestManualTestCases:

    def test_manual_case_without_story_is_ungrouped(self, store):
        store.add_manual_test_case(make_test_case("TC-M1"))

        assert store.get_test_case("TC-M1") is not None
        assert store.get_user_story(UNASSIGNED_STORY_ID) is None
        assert store.get_test_case_user_story("TC-M1") is None
        assert [tc.test_id for tc in store.group_test_cases_by_story()[UNGROUPED]] == ["TC-M1"]

    def test_manual_case_links_to_existing_story(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())
        store.add_manual_test_case(make_test_case("TC-M1"), "US-1")

        assert store.get_user_story("US-1").test_case_ids == ["TC-1", "TC-M1"]
        assert store.get_test_case_user_story("TC-M1").user_story_id == "US-1"

    def test_duplicate_id_rejected(self, store):
        store.add_manual_test_case(make_test_case("TC-M1"))
        with pytest.raises(DuplicateTestCaseError):
            store.add_manual_test_case(make_test_case("TC-M1"))


class TestUpdateTestCase:

    def test_merges_only_given_fields(self, store):
        store.add_test_cases([make_test_case("TC-1", description="original")], "US-1", story_input())

        updated = store.update_test_case("TC-1", {"status": "active", "automationLevel": 80})

        assert updated.status == TestCaseStatus.ACTIVE
        assert updated.automation_level == 80
        assert updated.description == "original"
        assert updated.test_id == "TC-1"

    def test_unknown_id_is_noop(self, store):
        assert store.update_test_case("TC-missing", TestCaseUpdate(name="x")) is None
        assert store.list_test_cases() == []

    def test_test_id_cannot_be_changed(self):
        with pytest.raises(ValueError):
            TestCaseUpdate.model_validate({"test_id": "TC-2"})

    def test_bulk_update_reports_updated_ids(self, store):
        store.add_test_cases([make_test_case("TC-1"), make_test_case("TC-2")], "US-1", story_input())

        updated = store.bulk_update_test_cases(["TC-1", "TC-x", "TC-2"], {"priority": "High"})

        assert updated == ["TC-1", "TC-2"]
        assert all(tc.priority == Priority.HIGH for tc in store.list_test_cases())

    def test_applying_same_update_twice_is_idempotent(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())
        changes = {"status": "active", "priority": "Low", "automationLevel": 60}

        once = store.update_test_case("TC-1", changes)
        twice = store.update_test_case("TC-1", changes)

        assert twice == once
        assert store.get_test_case("TC-1") == once


class TestRemoveTestCase:

    def test_remove_unlinks_from_story(self, store):
        store.add_test_cases([make_test_case("TC-1"), make_test_case("TC-2")], "US-1", story_input())

        assert store.remove_test_case("TC-1") is True
        assert store.get_test_case("TC-1") is None
        assert store.get_user_story("US-1").test_case_ids == ["TC-2"]

    def test_remove_unknown_returns_false(self, store):
        assert store.remove_test_case("TC-missing") is False

    def test_scripts_survive_removal(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())
        store.add_script(_script("script-TC-1-1", "TC-1"))

        store.remove_test_case("TC-1")

        assert store.get_script("script-TC-1-1") is not None

    def test_removed_case_has_no_owning_story(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())
        assert store.get_test_case_user_story("TC-1").user_story_id == "US-1"

        store.remove_test_case("TC-1")

        assert store.get_test_case_user_story("TC-1") is None

    def test_bulk_activate_then_remove_leaves_other_active(self, store):
        store.add_test_cases([make_test_case("TC-1"), make_test_case("TC-2")], "US-1", story_input())

        store.bulk_update_test_cases(["TC-1", "TC-2"], {"status": "active"})
        store.remove_test_case("TC-1")

        remaining = store.list_test_cases()
        assert [tc.test_id for tc in remaining] == ["TC-2"]
        assert remaining[0].status == TestCaseStatus.ACTIVE
        assert store.test_case_stats().active == 1


class TestStories:

    def test_analysis_upsert_creates_placeholder(self, store):
        story = store.update_user_story_analysis("US-9", stage2=rule_audit(False))

        assert story.user_story.user_story == "US-9"
        assert story.stage2_result.is_rule_complete is False

    def test_clear_stage_result(self, store):
        store.update_user_story_analysis("US-1", user_story=story_input(), stage2=rule_audit())

        assert store.clear_stage_result("US-1", 2) is True
        assert store.get_user_story("US-1").stage2_result is None
        assert store.clear_stage_result("US-missing", 2) is False

    def test_clear_stage_without_story_field_rejected(self, store):
        with pytest.raises(ValueError):
            store.clear_stage_result("US-1", 4)

    def test_import_skips_known_keys(self, store):
        store.update_user_story_analysis("JIRA-1", user_story=UserStoryInput(user_story="existing"))

        created = store.import_user_stories([
            ImportedStory(key="JIRA-1", summary="dup"),
            ImportedStory(key="JIRA-2", summary="Checkout", description="Pay by card", status="To Do"),
        ])

        assert [s.user_story_id for s in created] == ["JIRA-2"]
        imported = store.get_user_story("JIRA-2")
        assert imported.source_key == "JIRA-2"
        assert imported.source_status == "To Do"
        assert imported.user_story.detailed_description == "Pay by card"
        assert store.get_user_story("JIRA-1").user_story.user_story == "existing"


class TestScriptsAndMappings:

    def test_dom_mapping_last_write_wins(self, store):
        store.add_dom_mapping("US-1", dom_mapping("https://a.example.com"))
        store.add_dom_mapping("US-1", dom_mapping("https://b.example.com"))

        assert store.get_dom_mapping("US-1").url == "https://b.example.com"
        assert store.get_dom_mapping("US-2") is None

    def test_re_adding_script_replaces_it(self, store):
        first = store.add_script(_script("s-1", "TC-1"))
        replacement = _script("s-1", "TC-1").model_copy(update={"test_case_name": "renamed"})
        second = store.add_script(replacement)

        assert len(store.list_scripts()) == 1
        assert store.get_script("s-1").test_case_name == "renamed"
        assert second.updated_at >= first.updated_at

    def test_scripts_for_story(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())
        store.add_script(_script("s-1", "TC-1"))
        store.add_script(_script("s-2", "TC-other"))

        assert [s.id for s in store.get_scripts_for_story("US-1")] == ["s-1"]
        assert [s.id for s in store.get_scripts_by_test_case("TC-other")] == ["s-2"]

    def test_execution_result_roundtrip(self, store):
        store.add_script(_script("s-1", "TC-1"))
        result = execution({"TC-1": "passed"})

        assert store.add_execution_result("s-1", result) is not None
        assert store.get_execution_result("s-1").pass_rate == 100.0
        assert store.add_execution_result("s-missing", result) is None
        assert store.get_execution_result("s-missing") is None


class TestStatsAndIsolation:

    def test_stats(self, store):
        store.add_test_cases(
            [
                make_test_case("TC-1", priority="High", automationLevel=100),
                make_test_case("TC-2", status="active", automationLevel=50),
                make_test_case("TC-3", status="deprecated"),
            ],
            "US-1",
            story_input(),
        )

        stats = store.test_case_stats()

        assert (stats.total, stats.draft, stats.active, stats.deprecated) == (3, 1, 1, 1)
        assert stats.high_priority_draft == 1
        assert stats.average_automation == 50

    def test_readers_get_copies(self, store):
        store.add_test_cases([make_test_case("TC-1")], "US-1", story_input())

        snapshot = store.get_test_case("TC-1")
        snapshot.name = "mutated outside"
        store.get_user_story("US-1").test_case_ids.append("TC-ghost")

        assert store.get_test_case("TC-1").name == "Login scenario TC-1"
        assert store.get_user_story("US-1").test_case_ids == ["TC-1"]

    def test_concurrent_batches_keep_links_consistent(self, store):
        def worker(n):
            store.add_test_cases(
                [make_test_case(f"TC-{n}-{i}") for i in range(20)], "US-1", story_input()
            )

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        story = store.get_user_story("US-1")
        assert len(story.test_case_ids) == 160
        assert len(set(story.test_case_ids)) == 160
        assert len(store.list_test_cases("US-1")) == 160
