"""Process-wide wiring of clients, services and session stores."""
from __future__ import annotations

import logging

import httpx

from eliot_admin.application.artifact_generation import ArtifactGenerationService
from eliot_admin.application.decoder_workflow import DecoderWorkflowService
from eliot_admin.application.model_insertion import InsertionSession, ModelInsertionService
from eliot_admin.application.sessions import SessionStore
from eliot_admin.config import Settings
from eliot_admin.infrastructure.decoder_api import DecoderApiClient
from eliot_admin.infrastructure.device_services import DeviceModelFinderClient, ModelDbInsertionClient
from eliot_admin.infrastructure.document_intelligence import DocumentIntelligenceClient

LOGGER = logging.getLogger(__name__)


class Console:
    """Everything a request handler needs, built once per application.

    A single ``httpx.AsyncClient`` is shared by every outbound client; tests
    pass one backed by ``httpx.MockTransport``.
    """

    def __init__(self, settings: Settings, *, http_client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=settings.http_timeout)

        self.jobs = DocumentIntelligenceClient(settings.func_base, settings.func_key, http_client=self.http)
        self.decoder_api = DecoderApiClient(http_client=self.http)
        self.finder = DeviceModelFinderClient(settings.device_model_finder_url, http_client=self.http)
        self.insertion_client = ModelDbInsertionClient(settings.model_db_insertion_url, http_client=self.http)
        self.insertion = ModelInsertionService(self.insertion_client)

        self.workflows: SessionStore[DecoderWorkflowService] = SessionStore("decoder")
        self.artifact_jobs: SessionStore[ArtifactGenerationService] = SessionStore("artifact")
        self.insertions: SessionStore[InsertionSession] = SessionStore("insertion")

    def new_workflow(self) -> DecoderWorkflowService:
        return DecoderWorkflowService(self.settings, jobs=self.jobs, api=self.decoder_api)

    def new_artifact_job(self) -> ArtifactGenerationService:
        return ArtifactGenerationService(self.settings, jobs=self.jobs)

    async def aclose(self) -> None:
        for session_id in self.workflows:
            self.workflows.get(session_id).reset()
        for session_id in self.artifact_jobs:
            self.artifact_jobs.get(session_id).reset()
        if self._owns_client:
            await self.http.aclose()
        LOGGER.info("console closed")


__all__ = ["Console"]
