"""Tests for PipelineAPIClient against httpx.MockTransport."""
import json

import httpx
import pytest

from qaflow.models.pipeline_schemas import (
    DOMMappingInput,
    ExecuteTestsInput,
    TestCaseGenerationInput,
    UserStoryInput,
)
from qaflow.services.pipeline_client import PipelineAPIClient, PipelineAPIError

from factories import dom_mapping, execution, playwright_scripts, scenarios, testability


def make_client(handler) -> PipelineAPIClient:
    return PipelineAPIClient("http://pipeline.test/", transport=httpx.MockTransport(handler))


class TestStageCalls:

    @pytest.mark.asyncio
    async def test_analyze_posts_story_and_parses_result(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=testability().model_dump(mode="json"))

        async with make_client(handler) as api:
            insight = await api.analyze_testability(UserStoryInput(user_story="As a user I log in"))

        assert seen["method"] == "POST"
        assert seen["path"] == "/api/v1/analyze"
        # None fields are not sent
        assert seen["body"] == {"user_story": "As a user I log in"}
        assert insight.is_test_ready is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method_name,payload,expected_path,response",
        [
            ("generate_test_cases", TestCaseGenerationInput(user_story="x"), "/api/v1/generate-test-cases", scenarios()),
            ("map_dom", DOMMappingInput(url="https://app.example.com"), "/api/v1/dom-mapping", dom_mapping()),
            (
                "execute_tests",
                ExecuteTestsInput(scripts=playwright_scripts().scripts),
                "/api/v1/execute-tests",
                execution({"TC-001": "passed"}),
            ),
        ],
    )
    async def test_endpoints(self, method_name, payload, expected_path, response):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json=response.model_dump(mode="json", by_alias=True))

        async with make_client(handler) as api:
            result = await getattr(api, method_name)(payload)

        assert paths == [expected_path]
        assert result == response

    @pytest.mark.asyncio
    async def test_dom_mapping_keeps_unknown_keys(self):
        def handler(request):
            body = dom_mapping().model_dump(mode="json")
            body["screenshot"] = "base64..."
            return httpx.Response(200, json=body)

        async with make_client(handler) as api:
            result = await api.map_dom(DOMMappingInput(url="https://app.example.com"))

        assert result.model_extra["screenshot"] == "base64..."

    @pytest.mark.asyncio
    async def test_user_stories_list(self):
        def handler(request):
            assert request.method == "GET"
            return httpx.Response(200, json=[{"id": "US-1", "title": "Login", "testCases": 3}])

        async with make_client(handler) as api:
            stories = await api.get_user_stories()

        assert stories[0].test_cases == 3


class TestErrors:

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        async with make_client(lambda request: httpx.Response(503, json={"detail": "down"})) as api:
            with pytest.raises(PipelineAPIError) as exc:
                await api.health()

        assert exc.value.status_code == 503
        assert exc.value.endpoint == "/health"
        assert str(exc.value).startswith("API Error [/health]: 503")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as api:
            with pytest.raises(PipelineAPIError) as exc:
                await api.playwright_status()

        assert exc.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as api:
            with pytest.raises(PipelineAPIError, match="timed out"):
                await api.analyze_testability(UserStoryInput(user_story="story"))

    @pytest.mark.asyncio
    async def test_invalid_body(self):
        async with make_client(lambda request: httpx.Response(200, json={"unexpected": True})) as api:
            with pytest.raises(PipelineAPIError, match="invalid response body"):
                await api.analyze_testability(UserStoryInput(user_story="story"))

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        async with make_client(lambda request: httpx.Response(200, text="<html>")) as api:
            with pytest.raises(PipelineAPIError):
                await api.health()
