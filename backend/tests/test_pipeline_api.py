"""Pipeline API tests: drive a story through the stages over HTTP."""
from unittest.mock import AsyncMock

from qaflow.services.pipeline_client import PipelineAPIError

from factories import STORY_TEXT, rule_audit, testability

STORY_URL = "/api/v1/pipeline/stories/US-1"


def open_pipeline(client, **body):
    body.setdefault("initial_data", {"user_story": STORY_TEXT})
    response = client.post(STORY_URL, json=body)
    assert response.status_code == 201
    return response.json()


def test_open_returns_snapshot(client):
    snapshot = open_pipeline(client)

    assert snapshot["user_story_id"] == "US-1"
    assert snapshot["current_stage"] == 1
    assert snapshot["progress_percent"] == 0
    assert len(snapshot["stages"]) == 7


def test_unknown_pipeline_is_404(client):
    assert client.get(STORY_URL).status_code == 404
    assert client.post(f"{STORY_URL}/stages/1").status_code == 404


def test_invalid_range_rejected(client):
    response = client.post(STORY_URL, json={"active_range": [5, 2]})
    assert response.status_code == 422


def test_full_pipeline_over_http(client, fake_api):
    open_pipeline(client)

    for stage in range(1, 8):
        response = client.post(f"{STORY_URL}/stages/{stage}")
        assert response.status_code == 200, response.json()
        assert response.json()["success"] is True

    snapshot = client.get(STORY_URL).json()
    assert snapshot["current_stage"] == 7
    assert snapshot["range_complete"] is True
    assert snapshot["progress_percent"] == 100

    story = client.get("/api/v1/stories/US-1").json()
    assert story["test_case_ids"] == ["TC-001", "TC-002"]
    assert story["stage7_result"]["total_tests"] == 2

    scripts = client.get("/api/v1/scripts", params={"story_id": "US-1"}).json()
    assert len(scripts) == 2

    activities = client.get("/api/v1/activities", params={"activity_type": "pipeline_step"}).json()["data"]
    assert {a["step_name"] for a in activities} >= {"stage1_testability", "stage7_execution"}


def test_stage_ahead_is_conflict(client):
    open_pipeline(client)

    response = client.post(f"{STORY_URL}/stages/4")

    assert response.status_code == 409
    assert response.json()["error_kind"] == "not_reachable"


def test_remote_failure_is_bad_gateway(client, fake_api):
    fake_api.analyze_testability = AsyncMock(side_effect=PipelineAPIError("/api/v1/analyze", "503"))
    open_pipeline(client)

    response = client.post(f"{STORY_URL}/stages/1")

    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert body["pipeline"]["current_stage"] == 1


def test_missing_story_is_unprocessable(client):
    client.post(STORY_URL, json={})

    response = client.post(f"{STORY_URL}/stages/1")

    assert response.status_code == 422
    assert response.json()["error_kind"] == "validation"


def test_blocked_story_refine_and_proceed(client, fake_api):
    fake_api.analyze_testability = AsyncMock(return_value=testability(ready=False))
    fake_api.analyze_rule_grounding = AsyncMock(side_effect=[rule_audit(False), rule_audit(True)])
    open_pipeline(client)

    response = client.post(f"{STORY_URL}/stages/1")
    assert response.json()["advanced"] is False

    response = client.post(f"{STORY_URL}/proceed")
    assert response.json()["current_stage"] == 2

    response = client.post(f"{STORY_URL}/stages/2")
    assert response.json()["current_stage"] == 2

    response = client.post(f"{STORY_URL}/stages/2/refine", json={"answers": {"Locked?": "After 3 attempts"}})
    assert response.status_code == 200
    body = response.json()
    assert body["current_stage"] == 3
    assert body["pipeline"]["iteration_count"] == 1


def test_stage_3_answers(client):
    open_pipeline(client)
    for stage in (1, 2, 3):
        client.post(f"{STORY_URL}/stages/{stage}")

    response = client.post(
        f"{STORY_URL}/stages/3/answers",
        json={"answers": {"Which browsers are supported?": "Chrome and Firefox"}},
    )

    assert response.status_code == 200
    items = response.json()["result"]["clarification_items"]
    assert items[1]["resolution_answer"] == "Chrome and Firefox"


def test_sessions_are_isolated(client):
    open_pipeline(client)
    client.post(f"{STORY_URL}/stages/1")

    other = client.get(STORY_URL, headers={"X-Session-ID": "other"})
    assert other.status_code == 404
    assert client.get("/api/v1/stories", headers={"X-Session-ID": "other"}).json() == []
    assert len(client.get("/api/v1/stories").json()) == 1


def test_rerun_failed(client, fake_api):
    open_pipeline(client)
    for stage in range(1, 8):
        client.post(f"{STORY_URL}/stages/{stage}")

    response = client.post(f"{STORY_URL}/stages/7/rerun-failed")

    assert response.status_code == 200
    assert fake_api.execute_tests.await_count == 2
