"""QAFlow - Pipeline API Client

Async client of the remote AI pipeline service, one coroutine per stage.
No retries here: every failure surfaces as PipelineAPIError and the caller
decides whether to try again.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from qaflow.core.config import settings
from qaflow.models.pipeline_schemas import (
    AmbiguityClassification,
    AmbiguityClassificationInput,
    DOMMappingInput,
    DOMMappingResult,
    ExecuteTestsInput,
    ExecutionResults,
    HealthStatus,
    PlaywrightGenerationInput,
    PlaywrightScripts,
    PlaywrightStatus,
    RequirementRefinementInput,
    RequirementRefinementResult,
    RuleAuditResult,
    RuleGroundingInput,
    TestabilityInsight,
    TestCaseGenerationInput,
    TestScenarios,
    UserStoryInput,
    UserStorySummary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineAPIError(Exception):
    """Remote pipeline call failed (transport, HTTP status or invalid body)"""

    def __init__(self, endpoint: str, message: str, status_code: Optional[int] = None):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"API Error [{endpoint}]: {message}")


class PipelineAPIClient:
    """
    Remote pipeline service client

    Usage:
        async with PipelineAPIClient() as api:
            insight = await api.analyze_testability(UserStoryInput(user_story="..."))
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PIPELINE_API_BASE_URL).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.PIPELINE_API_TIMEOUT,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "PipelineAPIClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        response_type: Any,
        body: Optional[BaseModel] = None,
    ):
        json_body = body.model_dump(mode="json", exclude_none=True) if body is not None else None
        try:
            response = await self._client.request(method, endpoint, json=json_body)
            response.raise_for_status()
            return TypeAdapter(response_type).validate_python(response.json())
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Pipeline API {endpoint} returned {status}")
            raise PipelineAPIError(endpoint, f"{status} {e.response.reason_phrase}", status) from e
        except httpx.TimeoutException as e:
            logger.error(f"Pipeline API {endpoint} timed out")
            raise PipelineAPIError(endpoint, "request timed out") from e
        except httpx.RequestError as e:
            logger.error(f"Pipeline API {endpoint} unreachable: {e}")
            raise PipelineAPIError(endpoint, f"request failed: {e}") from e
        except (ValueError, ValidationError) as e:
            # json decode errors are ValueErrors too
            logger.error(f"Pipeline API {endpoint} sent an invalid body: {e}")
            raise PipelineAPIError(endpoint, "invalid response body") from e

    async def _post(self, endpoint: str, body: BaseModel, response_type: type[T]) -> T:
        return await self._request("POST", endpoint, response_type, body)

    async def _get(self, endpoint: str, response_type: Any):
        return await self._request("GET", endpoint, response_type)

    # ============================================================
    # Service metadata
    # ============================================================

    async def health(self) -> HealthStatus:
        return await self._get("/health", HealthStatus)

    async def playwright_status(self) -> PlaywrightStatus:
        return await self._get("/api/v1/playwright-status", PlaywrightStatus)

    async def get_user_stories(self) -> list[UserStorySummary]:
        return await self._get("/api/v1/user-stories", list[UserStorySummary])

    # ============================================================
    # Stages
    # ============================================================

    async def analyze_testability(self, data: UserStoryInput) -> TestabilityInsight:
        return await self._post("/api/v1/analyze", data, TestabilityInsight)

    async def analyze_rule_grounding(self, data: RuleGroundingInput) -> RuleAuditResult:
        return await self._post("/api/v1/rule-grounding", data, RuleAuditResult)

    async def refine_requirements(self, data: RequirementRefinementInput) -> RequirementRefinementResult:
        return await self._post("/api/v1/refine-requirements", data, RequirementRefinementResult)

    async def classify_ambiguities(self, data: AmbiguityClassificationInput) -> AmbiguityClassification:
        return await self._post("/api/v1/ambiguity-classification", data, AmbiguityClassification)

    async def generate_test_cases(self, data: TestCaseGenerationInput) -> TestScenarios:
        return await self._post("/api/v1/generate-test-cases", data, TestScenarios)

    async def map_dom(self, data: DOMMappingInput) -> DOMMappingResult:
        return await self._post("/api/v1/dom-mapping", data, DOMMappingResult)

    async def generate_playwright(self, data: PlaywrightGenerationInput) -> PlaywrightScripts:
        return await self._post("/api/v1/generate-playwright", data, PlaywrightScripts)

    async def execute_tests(self, data: ExecuteTestsInput) -> ExecutionResults:
        return await self._post("/api/v1/execute-tests", data, ExecutionResults)
