"""Client for the document-intelligence job service and its SAS blob URLs."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from eliot_admin.domain.jobs import Job
from eliot_admin.errors import (
    ArtifactDownloadError,
    EvidenceLoadError,
    EvidenceSaveError,
    GenerationStartError,
    JobFailedError,
    JobLookupError,
    PollTimeoutError,
    UploadError,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 2.0

JobPredicate = Callable[[Job], bool]
JobCallback = Callable[[Job], None]
Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


def evidence_content_type(url: str) -> str:
    if ".md" in url:
        return "text/markdown; charset=utf-8"
    return "text/plain; charset=utf-8"


class DocumentIntelligenceClient:
    """Upload, status and evidence operations against the extraction service."""

    def __init__(
        self,
        base_url: str,
        function_key: str,
        *,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._function_key = function_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self._base_url}/api/{path}"

    def _auth_headers(self) -> dict[str, str]:
        return {"x-functions-key": self._function_key}

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        return response.reason_phrase or str(response.status_code)

    async def _put_evidence(self, url: str, text: str) -> httpx.Response:
        content_type = evidence_content_type(url)
        headers = {
            "x-ms-blob-type": "BlockBlob",
            "x-ms-blob-content-type": content_type,
            "Content-Type": content_type,
        }
        return await self._client.put(url, content=text.encode("utf-8"), headers=headers)

    # ------------------------------------------------------------------
    # job lifecycle
    # ------------------------------------------------------------------
    async def upload_document(self, data: bytes) -> Job:
        headers = {**self._auth_headers(), "Content-Type": "application/pdf"}
        try:
            response = await self._client.post(self._url("CreateJobAndUpload"), content=data, headers=headers)
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload failed: {exc}") from exc

        if not response.is_success:
            raise UploadError(f"Upload failed: {self._reason(response)}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise UploadError("Invalid response from server") from exc
        if not isinstance(payload, dict):
            raise UploadError("Invalid response from server")
        job = Job.from_payload(payload)
        if not job.ok or not job.id:
            raise UploadError("Invalid response from server")

        LOGGER.info("uploaded document job=%s bytes=%d", job.id, len(data))
        return job

    async def get_job(self, job_id: str) -> Job:
        try:
            response = await self._client.get(self._url(f"job/{job_id}"), headers=self._auth_headers())
        except httpx.HTTPError as exc:
            raise JobLookupError(f"Failed to get job: {exc}") from exc
        if not response.is_success:
            raise JobLookupError(
                f"Failed to get job: {self._reason(response)}",
                upstream_status=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise JobLookupError("Invalid job response from server") from exc
        if not isinstance(payload, dict):
            raise JobLookupError("Invalid job response from server")
        return Job.from_payload(payload)

    async def start_generation(
        self,
        job_id: str,
        *,
        output_type: str,
        general_prompt: str,
        special_prompt: str = "",
    ) -> None:
        body = {
            "jobId": job_id,
            "outputType": output_type,
            "generalPrompt": general_prompt,
            "specialPrompt": special_prompt,
        }
        try:
            response = await self._client.post(self._url("StartGeneration"), json=body, headers=self._auth_headers())
        except httpx.HTTPError as exc:
            raise GenerationStartError(f"Generation failed: {exc}") from exc
        if not response.is_success:
            raise GenerationStartError(
                f"Generation failed: {self._reason(response)}",
                upstream_status=response.status_code,
            )
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise GenerationStartError("Generation request failed") from exc
        if not isinstance(payload, dict) or not payload.get("ok"):
            raise GenerationStartError("Generation request failed")
        LOGGER.info("generation started job=%s output=%s", job_id, output_type)

    # ------------------------------------------------------------------
    # evidence and artifacts
    # ------------------------------------------------------------------
    async def load_evidence_text(self, job: Job) -> str:
        """Fetch the extracted text, refreshing an expired SAS link once."""

        refreshed = False
        while True:
            url = job.readable_evidence_url
            if not url:
                raise EvidenceLoadError("No evidence URL available")

            try:
                response = await self._client.get(url)
            except httpx.HTTPError as exc:
                raise EvidenceLoadError("Failed to load evidence") from exc
            if response.is_success:
                return response.text
            if response.status_code == 403 and not refreshed:
                LOGGER.info("evidence link expired job=%s, refreshing", job.id)
                try:
                    job = await self.get_job(job.id)
                except JobLookupError as exc:
                    raise EvidenceLoadError("Failed to load evidence") from exc
                refreshed = True
                continue
            raise EvidenceLoadError("Failed to load evidence")

    async def save_evidence_text(self, job_id: str, write_url: str, text: str) -> str:
        """PUT ``text`` to the evidence blob and return the write URL that worked.

        A 403 refreshes the job once; the caller should keep the returned URL
        since it may differ from ``write_url``.
        """

        try:
            response = await self._put_evidence(write_url, text)
        except httpx.HTTPError as exc:
            raise EvidenceSaveError(f"Save failed: {exc}") from exc
        if response.is_success:
            return write_url
        if response.status_code != 403:
            raise EvidenceSaveError(f"Save failed: {self._reason(response)}")

        LOGGER.info("evidence write link expired job=%s, refreshing", job_id)
        try:
            refreshed_job = await self.get_job(job_id)
        except JobLookupError as exc:
            raise EvidenceSaveError("Could not refresh write URL") from exc
        fresh_url = refreshed_job.evidence_write_url
        if not fresh_url:
            raise EvidenceSaveError("Could not refresh write URL")

        try:
            retry = await self._put_evidence(fresh_url, text)
        except httpx.HTTPError as exc:
            raise EvidenceSaveError("Failed to save after refresh") from exc
        if not retry.is_success:
            raise EvidenceSaveError("Failed to save after refresh")
        return fresh_url

    async def _get_artifact(self, url: str) -> httpx.Response:
        try:
            return await self._client.get(url)
        except httpx.HTTPError as exc:
            raise ArtifactDownloadError("Download failed") from exc

    async def download_artifact(self, job: Job, kind: str) -> bytes:
        url = job.artifact_url(kind)
        if not url:
            raise ArtifactDownloadError("File URL not available")

        response = await self._get_artifact(url)
        if response.status_code == 403:
            LOGGER.info("artifact link expired job=%s kind=%s, refreshing", job.id, kind)
            try:
                refreshed_job = await self.get_job(job.id)
            except JobLookupError as exc:
                raise ArtifactDownloadError("Download failed") from exc
            retry_url = refreshed_job.artifact_url(kind)
            if not retry_url:
                raise ArtifactDownloadError("Download failed")
            response = await self._get_artifact(retry_url)

        if not response.is_success:
            raise ArtifactDownloadError("Download failed")
        return response.content

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------
    async def poll_until(
        self,
        job_id: str,
        predicate: JobPredicate,
        on_update: JobCallback | None = None,
        *,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> Job:
        """Poll ``job_id`` until ``predicate`` holds.

        Raises :class:`PollTimeoutError` once ``timeout`` seconds have elapsed
        since the first tick and :class:`JobFailedError` when the job reports
        a failure. A tick whose request fails is logged and retried on the
        next tick.
        """

        started = self._clock()
        while True:
            elapsed = self._clock() - started
            if elapsed >= timeout:
                raise PollTimeoutError("Polling timeout")

            try:
                job = await self.get_job(job_id)
            except JobLookupError as exc:
                LOGGER.warning("poll tick failed job=%s: %s", job_id, exc)
            else:
                if on_update is not None:
                    on_update(job)
                if predicate(job):
                    return job
                if job.is_failed:
                    raise JobFailedError(job.error or "Job failed")

            remaining = timeout - (self._clock() - started)
            await self._sleep(max(0.0, min(interval, remaining)))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["DocumentIntelligenceClient", "evidence_content_type"]
