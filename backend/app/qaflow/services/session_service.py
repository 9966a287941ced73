"""QAFlow - Session Service

Pipeline sessions: one data store plus the stage orchestrators of each story,
keyed by session id. The registry lives on ``app.state`` for the lifetime of
the application.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from qaflow.models.pipeline_schemas import UserStoryInput
from qaflow.services.orchestrator_service import ActivityRecorderLike, StageOrchestrator
from qaflow.services.pipeline_client import PipelineAPIClient
from qaflow.services.pipeline_store import PipelineDataStore

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


@dataclass
class PipelineSession:
    session_id: str
    store: PipelineDataStore = field(default_factory=PipelineDataStore)
    orchestrators: dict[str, StageOrchestrator] = field(default_factory=dict)


class SessionRegistry:
    """Owns pipeline sessions and hands out orchestrators.

    Args:
        client_factory: builds the remote API client shared by the registry
        recorder: optional activity recorder passed to every orchestrator
    """

    def __init__(
        self,
        client_factory: Callable[[], Any] = PipelineAPIClient,
        recorder: Optional[ActivityRecorderLike] = None,
    ):
        self._lock = threading.Lock()
        self._sessions: dict[str, PipelineSession] = {}
        self._client_factory = client_factory
        self._client: Any = None
        self.recorder = recorder

    @property
    def client(self) -> Any:
        with self._lock:
            if self._client is None:
                self._client = self._client_factory()
            return self._client

    def set_client(self, client: Any) -> None:
        """Replace the remote client (tests inject a fake here)."""
        with self._lock:
            self._client = client

    def get_or_create(self, session_id: str = DEFAULT_SESSION_ID) -> PipelineSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = PipelineSession(session_id=session_id)
                self._sessions[session_id] = session
                logger.info(f"Pipeline session created: {session_id}")
            return session

    def open_orchestrator(
        self,
        session_id: str,
        user_story_id: str,
        *,
        active_range: Optional[tuple[int, int]] = None,
        standalone_stage: Optional[int] = None,
        initial_data: Optional[UserStoryInput] = None,
        target_url: Optional[str] = None,
    ) -> StageOrchestrator:
        """Create (or replace) the orchestrator of a story within a session.

        Raises:
            ValueError: invalid range or standalone stage
        """
        session = self.get_or_create(session_id)
        orchestrator = StageOrchestrator(
            user_story_id,
            session.store,
            self.client,
            recorder=self.recorder,
            active_range=active_range,
            standalone_stage=standalone_stage,
            initial_data=initial_data,
            target_url=target_url,
        )
        with self._lock:
            session.orchestrators[user_story_id] = orchestrator
        return orchestrator

    def get_orchestrator(self, session_id: str, user_story_id: str) -> Optional[StageOrchestrator]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.orchestrators.get(user_story_id) if session else None

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None and hasattr(client, "aclose"):
            await client.aclose()
