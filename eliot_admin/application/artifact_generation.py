"""One-shot decoder artifact generation from an uploaded PDF.

The job service does all of the work here: it extracts evidence from the PDF,
lets the user edit that evidence, and then renders decoder artifacts for the
selected output language. This module tracks the stage and owns the two
polling loops.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Coroutine, Iterator

from eliot_admin.config import Settings
from eliot_admin.domain.jobs import Job
from eliot_admin.errors import (
    ConsoleError,
    EvidenceSaveError,
    FormError,
    InvalidTransitionError,
    JobFailedError,
    PollTimeoutError,
    WorkflowBusyError,
)
from eliot_admin.infrastructure.document_intelligence import DocumentIntelligenceClient
from eliot_admin.infrastructure.polling import JobPoller

LOGGER = logging.getLogger(__name__)

EXTRACTION_POLL = "extraction"
GENERATION_POLL = "generation"

OUTPUT_EXTENSIONS: dict[str, str] = {
    "csharp": "cs",
    "python": "py",
    "javascript": "js",
}

DEFAULT_GENERAL_PROMPT = """You are given EVIDENCE extracted from a sensor payload PDF. Produce a SINGLE JSON object with keys:
payloadExample, consoleDecoder, fullDecoder, metadata, decodedExample, validation.
No prose, no code fences.

Rules:
- LANGUAGE: C# ONLY.
- fullDecoder signature: public static async Task<JObject> Decode(JObject deviceData, ILogger log)
  and include: using Newtonsoft.Json.Linq; using Microsoft.Extensions.Logging;
- Parse bytes with a TLV loop: read [channel][type] then Data; obey the PDF's endianness
  (default little-endian for multi-byte if unspecified). If the PDF clearly shows port-based
  (FPort) or non-TLV formats, adapt accordingly and state this in metadata.notes.
- Map ONLY what's documented. Prefer standard names when evident: BatteryLevel (%),
  Temperature (°C), Humidity (%), CO2 (ppm). Do not invent fields.
- metadata.spec.frames must mirror the spec: "channel"/"type" as hex strings (e.g. "0x03","0x67"),
  "len" in bytes, "endian", "scale" (e.g. "x0.1" or "/2"), "name", "unit"; include "ports" if stated.
- Provide a robust HexToBytes helper (tolerate whitespace/odd lengths), bounds-check reads,
  skip unknown frames safely, never throw.
- payloadExample must be a short, valid hex that your decoder can parse; decodedExample must be
  exactly what your decoder computes on payloadExample.
- Ban: string token switching on textual tokens; any JavaScript keywords (let/const/function).
- If evidence is ambiguous/insufficient, set validation.hasDecode=false and list reasons; still
  return the full JSON object."""


class ArtifactStage(str, Enum):
    IDLE = "idle"
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    EDITING = "editing"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


def artifact_filename(kind: str, output_type: str) -> str:
    if kind == "result_json":
        return "result.json"
    extension = OUTPUT_EXTENSIONS.get(output_type, "cs")
    if kind == "full_decoder":
        return f"fullDecoder.{extension}"
    if kind == "console_decoder":
        return f"consoleDecoder.{extension}"
    raise FormError(f"Unknown artifact: {kind}")


class ArtifactGenerationService:
    def __init__(
        self,
        settings: Settings,
        *,
        jobs: DocumentIntelligenceClient,
        poller: JobPoller | None = None,
    ) -> None:
        self._settings = settings
        self._jobs = jobs
        self._poller = poller or JobPoller()
        self._task: asyncio.Task[None] | None = None
        self._busy = False
        self._reset_fields()

    def _reset_fields(self) -> None:
        self.stage = ArtifactStage.IDLE
        self.job: Job | None = None
        self.job_id = ""
        self.error: str | None = None
        self.evidence = ""
        self.original_evidence = ""
        self.output_type = "csharp"
        self.general_prompt = DEFAULT_GENERAL_PROMPT
        self.special_prompt = ""
        self.poll_count = 0

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------
    def _track(self, job: Job) -> None:
        self.job = job
        self.poll_count += 1

    def _fail(self, message: str) -> None:
        LOGGER.warning("artifact job=%s failed at stage=%s: %s", self.job_id, self.stage.value, message)
        self.stage = ArtifactStage.FAILED
        self.error = message

    def _start(self, key: str, coro: Coroutine[Any, Any, None]) -> None:
        self.poll_count = 0
        self._task = self._poller.start(key, coro)

    async def _poll(self, predicate: Callable[[Job], bool], *, timeout_message: str, failure_message: str) -> Job | None:
        try:
            return await self._jobs.poll_until(
                self.job_id,
                predicate,
                self._track,
                timeout=self._settings.poll_timeout,
                interval=self._settings.poll_interval,
            )
        except PollTimeoutError:
            self._fail(timeout_message)
        except JobFailedError:
            self._fail(self.job.error if self.job is not None and self.job.error else failure_message)
        return None

    async def _extract(self) -> None:
        job = await self._poll(
            lambda current: current.has_evidence,
            timeout_message="Extraction timed out after 5 minutes",
            failure_message="Extraction failed",
        )
        if job is None:
            return
        self.stage = ArtifactStage.EXTRACTED
        try:
            content = await self._jobs.load_evidence_text(job)
        except ConsoleError as exc:
            # stays at extracted; the user may reload once the link is refreshed
            self.error = str(exc)
            LOGGER.warning("evidence load failed job=%s: %s", self.job_id, exc)
            return
        self.evidence = content
        self.original_evidence = content
        self.stage = ArtifactStage.EDITING
        LOGGER.info("evidence ready job=%s chars=%d", self.job_id, len(content))

    async def _generate(self) -> None:
        job = await self._poll(
            lambda current: current.has_artifacts,
            timeout_message="Generation timed out after 5 minutes",
            failure_message="Generation failed",
        )
        if job is None:
            return
        self.stage = ArtifactStage.DONE
        LOGGER.info("artifacts ready job=%s output=%s", self.job_id, self.output_type)

    async def wait(self) -> ArtifactStage:
        """Wait for the running poll, if any, and return the resulting stage."""

        task = self._task
        if task is not None:
            await asyncio.wait({task})
        return self.stage

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    @contextmanager
    def _processing(self, label: str) -> Iterator[None]:
        if self._busy:
            raise WorkflowBusyError("Another request is still running")
        self._busy = True
        try:
            yield
        except ConsoleError as exc:
            self.error = str(exc)
            LOGGER.warning("%s failed job=%s: %s", label, self.job_id or "-", exc)
            raise
        finally:
            self._busy = False

    async def upload(self, pdf: bytes) -> Job:
        if not pdf:
            raise FormError("Please select a PDF file")
        if self.stage in (ArtifactStage.EXTRACTING, ArtifactStage.GENERATING):
            raise WorkflowBusyError("A job is still being processed")

        with self._processing("upload"):
            self.stage = ArtifactStage.UPLOADED
            self.error = None
            try:
                job = await self._jobs.upload_document(pdf)
            except ConsoleError as exc:
                self._fail(str(exc))
                raise

        self.job = job
        self.job_id = job.id
        self.stage = ArtifactStage.EXTRACTING
        self._start(EXTRACTION_POLL, self._extract())
        return job

    async def reload_evidence(self) -> str:
        if self.job is None or self.stage is not ArtifactStage.EXTRACTED:
            raise InvalidTransitionError("No extracted evidence to load")
        with self._processing("evidence reload"):
            content = await self._jobs.load_evidence_text(self.job)
        self.evidence = content
        self.original_evidence = content
        self.error = None
        self.stage = ArtifactStage.EDITING
        return content

    def edit_evidence(self, text: str) -> None:
        self._require_editing()
        self.evidence = text

    def revert_evidence(self) -> None:
        self._require_editing()
        self.evidence = self.original_evidence

    def _require_editing(self) -> None:
        if self.stage is not ArtifactStage.EDITING:
            raise InvalidTransitionError("Evidence can only be changed while editing")

    async def save_evidence(self) -> None:
        self._require_editing()
        job = self.job
        if job is None or not job.evidence_write_url:
            raise EvidenceSaveError("No write URL available")
        with self._processing("evidence save"):
            text = self.evidence
            job.evidence_write_url = await self._jobs.save_evidence_text(self.job_id, job.evidence_write_url, text)
        self.original_evidence = text
        LOGGER.info("evidence saved job=%s", self.job_id)

    async def start_generation(
        self,
        output_type: str | None = None,
        general_prompt: str | None = None,
        special_prompt: str | None = None,
    ) -> None:
        self._require_editing()
        if output_type is not None and output_type not in OUTPUT_EXTENSIONS:
            raise FormError(f"Unsupported output type: {output_type}")

        with self._processing("generation start"):
            if output_type is not None:
                self.output_type = output_type
            if general_prompt is not None:
                self.general_prompt = general_prompt
            if special_prompt is not None:
                self.special_prompt = special_prompt

            await self._jobs.start_generation(
                self.job_id,
                output_type=self.output_type,
                general_prompt=self.general_prompt,
                special_prompt=self.special_prompt,
            )
        self.error = None
        self.stage = ArtifactStage.GENERATING
        self._start(GENERATION_POLL, self._generate())

    async def refresh_links(self) -> Job:
        if not self.job_id:
            raise InvalidTransitionError("No job to refresh")
        with self._processing("link refresh"):
            self.job = await self._jobs.get_job(self.job_id)
        return self.job

    async def download(self, kind: str) -> tuple[str, bytes]:
        if self.stage is not ArtifactStage.DONE or self.job is None:
            raise InvalidTransitionError("Artifacts are not ready yet")
        filename = artifact_filename(kind, self.output_type)
        content = await self._jobs.download_artifact(self.job, kind)
        return filename, content

    def reset(self) -> None:
        self._poller.cancel_all()
        self._task = None
        self._reset_fields()

    def snapshot(self) -> dict[str, object]:
        job = self.job
        return {
            "stage": self.stage.value,
            "job_id": self.job_id or None,
            "error": self.error,
            "poll_count": self.poll_count,
            "busy": self._busy,
            "output_type": self.output_type,
            "evidence": self.evidence,
            "evidence_modified": self.evidence != self.original_evidence,
            "general_prompt": self.general_prompt,
            "special_prompt": self.special_prompt,
            "artifacts": {
                kind: artifact_filename(kind, self.output_type)
                for kind in ("result_json", "full_decoder", "console_decoder")
                if job is not None and job.artifact_url(kind)
            },
        }


__all__ = [
    "ArtifactGenerationService",
    "ArtifactStage",
    "DEFAULT_GENERAL_PROMPT",
    "OUTPUT_EXTENSIONS",
    "artifact_filename",
]
