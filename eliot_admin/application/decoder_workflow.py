"""Drives a single decoder-generation workflow through its steps."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from eliot_admin.config import Settings
from eliot_admin.domain.jobs import Job
from eliot_admin.domain.workflow import (
    AcquisitionMode,
    GenerationAction,
    Manufacturer,
    ManufacturerProfile,
    STEP_TITLES,
    WORKFLOW_STEPS,
    WorkflowState,
    WorkflowStep,
    get_profile,
)
from eliot_admin.errors import (
    ApiCallError,
    ConsoleError,
    FormError,
    InvalidTransitionError,
    PollTimeoutError,
    WorkflowBusyError,
)
from eliot_admin.infrastructure.decoder_api import (
    DecoderApiClient,
    resolve_credentials,
    resolve_refine_credentials,
    response_field,
)
from eliot_admin.infrastructure.document_intelligence import DocumentIntelligenceClient
from eliot_admin.infrastructure.polling import JobPoller

LOGGER = logging.getLogger(__name__)

EXTRACTION_POLL = "extraction"
EXTRACTION_TIMEOUT_MESSAGE = "Extraction timed out after 5 minutes"

# fields a user may type into directly; generated text is editable as well
EDITABLE_ARTIFACTS = frozenset(
    {
        "sensor_specific_prompt",
        "composite_spec",
        "rules_block",
        "examples_tables_md",
        "decoder_code",
        "refinement_feedback",
        "device_profile",
        "device_name",
        "safe_class_name",
        "device_format",
        "manual_examples",
    }
)

_NOT_NAVIGABLE = frozenset({WorkflowStep.EXTRACTING})


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False)


class DecoderWorkflowService:
    """Owns one :class:`WorkflowState` and every remote call that mutates it.

    Operations that talk to a remote service are serialised by a busy flag;
    a second call while one is in flight raises :class:`WorkflowBusyError`.
    A failed call leaves the step pointer where it was and stores a
    user-facing message in ``last_error``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        jobs: DocumentIntelligenceClient,
        api: DecoderApiClient,
        poller: JobPoller | None = None,
        state: WorkflowState | None = None,
    ) -> None:
        self._settings = settings
        self._jobs = jobs
        self._api = api
        self._poller = poller or JobPoller()
        self.state = state or WorkflowState()
        self.last_error: str | None = None
        self._busy = False
        self._evidence_write_url = ""
        self._extraction_task: asyncio.Task[Job | None] | None = None
        self._extraction_error: ConsoleError | None = None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def extracting(self) -> bool:
        return self._poller.is_running(EXTRACTION_POLL)

    @contextmanager
    def _processing(self, label: str) -> Iterator[None]:
        if self._busy:
            raise WorkflowBusyError("Another request is still running")
        if self.extracting:
            raise WorkflowBusyError("An extraction is still running")
        self._busy = True
        self.last_error = None
        try:
            yield
        except ConsoleError as exc:
            self.last_error = str(exc)
            LOGGER.warning("%s failed manufacturer=%s: %s", label, self.state.manufacturer, exc)
            raise
        finally:
            self._busy = False

    def _require_profile(self) -> ManufacturerProfile:
        profile = self.state.profile
        if profile is None:
            raise InvalidTransitionError("Select a manufacturer first")
        return profile

    def _require_documentation(self) -> None:
        if not self.state.artifacts.documentation.strip():
            raise InvalidTransitionError("Documentation required: upload a PDF or paste the documentation text")

    def _apply_response(self, action: GenerationAction, payload: dict[str, Any], *, overwrite_empty: bool) -> None:
        updates: dict[str, str] = {}
        for item in action.response:
            value = response_field(payload, item.name)
            if not value:
                if item.required:
                    raise ApiCallError(f"{action.endpoint} returned no {item.name}")
                if not overwrite_empty:
                    continue
            updates[item.target] = _as_text(value) if value else ""
        for target, value in updates.items():
            setattr(self.state.artifacts, target, value)

    async def _call(self, action: GenerationAction) -> dict[str, Any]:
        manufacturer = self.state.manufacturer
        assert manufacturer is not None
        credentials = resolve_credentials(manufacturer.value, self._settings)
        body = action.build_body(self.state.artifacts)
        return await self._api.call_endpoint(credentials, action.endpoint, body, label=manufacturer.value)

    # ------------------------------------------------------------------
    # manufacturer and documentation
    # ------------------------------------------------------------------
    def select_manufacturer(self, manufacturer: Manufacturer | str) -> None:
        if self.state.step is not WorkflowStep.SELECT_MANUFACTURER:
            raise InvalidTransitionError("The manufacturer can only be changed after a reset")
        try:
            profile = get_profile(manufacturer)
        except ValueError as exc:
            raise FormError(f"Unknown manufacturer: {manufacturer}") from exc
        if not profile.enabled:
            raise InvalidTransitionError(f"{profile.label} is not available yet")

        self.state.manufacturer = profile.manufacturer
        self.state.acquisition_mode = profile.acquisition[0]
        self.state.advance_to(WorkflowStep.UPLOAD_DOC)
        LOGGER.info("manufacturer selected manufacturer=%s", profile.manufacturer.value)

    def paste_documentation(self, text: str) -> None:
        profile = self._require_profile()
        if AcquisitionMode.TEXT not in profile.acquisition:
            raise InvalidTransitionError(f"{profile.label} documentation must be uploaded as a PDF")
        if not text.strip():
            raise FormError("Documentation text is empty")
        if self.extracting:
            raise WorkflowBusyError("An extraction is still running")
        self.state.acquisition_mode = AcquisitionMode.TEXT
        self.state.artifacts.documentation = text

    async def begin_extraction(self, pdf: bytes) -> Job:
        """Upload ``pdf`` and start the owned extraction poll.

        Returns as soon as the job exists; completion is observed through
        :meth:`wait_for_extraction` or the state snapshot.
        """

        profile = self._require_profile()
        if AcquisitionMode.PDF not in profile.acquisition:
            raise InvalidTransitionError(f"{profile.label} documentation is entered as text")
        if not pdf:
            raise FormError("Please select a PDF file")

        with self._processing("upload"):
            self.state.acquisition_mode = AcquisitionMode.PDF
            self.state.poll_count = 0
            self.state.advance_to(WorkflowStep.EXTRACTING)
            try:
                job = await self._jobs.upload_document(pdf)
            except ConsoleError:
                self.state.return_to(WorkflowStep.UPLOAD_DOC)
                raise

        self.state.job_id = job.id
        self._extraction_error = None
        self._extraction_task = self._poller.start(EXTRACTION_POLL, self._extract(job.id))
        return job

    def _count_poll(self, job: Job) -> None:
        self.state.poll_count += 1

    async def _extract(self, job_id: str) -> Job | None:
        try:
            job = await self._jobs.poll_until(
                job_id,
                lambda current: current.has_evidence,
                self._count_poll,
                timeout=self._settings.poll_timeout,
                interval=self._settings.poll_interval,
            )
            text = await self._jobs.load_evidence_text(job)
        except PollTimeoutError as exc:
            self._extraction_failed(PollTimeoutError(EXTRACTION_TIMEOUT_MESSAGE), exc)
            return None
        except ConsoleError as exc:
            self._extraction_failed(exc, exc)
            return None

        self.state.artifacts.documentation = text
        self._evidence_write_url = job.evidence_write_url or ""
        self.state.advance_to(WorkflowStep.VIEW_DOC)
        LOGGER.info("extraction complete job=%s chars=%d", job_id, len(text))
        return job

    def _extraction_failed(self, error: ConsoleError, cause: BaseException) -> None:
        LOGGER.warning("extraction failed job=%s: %s", self.state.job_id, cause)
        self._extraction_error = error
        self.last_error = str(error)
        if self.state.step is WorkflowStep.EXTRACTING:
            self.state.return_to(WorkflowStep.UPLOAD_DOC)

    async def wait_for_extraction(self) -> Job:
        task = self._extraction_task
        if task is None:
            raise InvalidTransitionError("No extraction has been started")
        await asyncio.wait({task})
        if task.cancelled():
            raise InvalidTransitionError("Extraction was cancelled")
        job = task.result()
        if job is None:
            assert self._extraction_error is not None
            raise self._extraction_error
        return job

    def cancel_extraction(self) -> bool:
        cancelled = self._poller.cancel(EXTRACTION_POLL)
        if self.state.step is WorkflowStep.EXTRACTING:
            self.state.return_to(WorkflowStep.UPLOAD_DOC)
        if cancelled:
            LOGGER.info("extraction cancelled job=%s", self.state.job_id)
        return cancelled

    async def update_documentation(self, text: str) -> None:
        """Replace the documentation; extracted text is written back to its blob."""

        self._require_profile()
        with self._processing("save documentation"):
            if self.state.job_id and self._evidence_write_url:
                self._evidence_write_url = await self._jobs.save_evidence_text(
                    self.state.job_id, self._evidence_write_url, text
                )
                LOGGER.info("documentation saved job=%s", self.state.job_id)
            self.state.artifacts.documentation = text

    def update_artifacts(self, values: Mapping[str, str]) -> None:
        unknown = sorted(set(values) - EDITABLE_ARTIFACTS)
        if unknown:
            raise FormError(f"Fields cannot be edited: {', '.join(unknown)}")
        for name, value in values.items():
            setattr(self.state.artifacts, name, value)

    # ------------------------------------------------------------------
    # generation
    # ------------------------------------------------------------------
    async def run_step(self, step: WorkflowStep | str) -> None:
        target = WorkflowStep(step)
        profile = self._require_profile()
        if profile.unified is not None:
            raise InvalidTransitionError(f"{profile.label} generates every step in a single run")
        action = profile.action_for_step(target)
        if action is None:
            raise InvalidTransitionError(f"{profile.label} has no {STEP_TITLES[target]} step")
        self._require_documentation()
        previous = profile.previous_generation_step(target)
        if previous is not None and previous.position > self.state.furthest_index:
            raise InvalidTransitionError(f"Complete {STEP_TITLES[previous]} first")

        with self._processing(action.endpoint):
            payload = await self._call(action)
            self._apply_response(action, payload, overwrite_empty=False)
            self.state.advance_to(target)
        LOGGER.info("step complete manufacturer=%s step=%s", profile.manufacturer.value, target.value)

    async def run_action(self, name: str) -> None:
        """Run an in-place action that rewrites an artifact without moving."""

        profile = self._require_profile()
        action = profile.action_named(name)
        if action is None or action.step is not None:
            raise InvalidTransitionError(f"{profile.label} has no action named {name}")
        self._require_documentation()
        missing = [
            item.key for item in action.request if not item.optional and not getattr(self.state.artifacts, item.source)
        ]
        if missing:
            raise InvalidTransitionError(f"Missing input for {name}: {', '.join(missing)}")

        with self._processing(action.endpoint):
            payload = await self._call(action)
            self._apply_response(action, payload, overwrite_empty=False)
        LOGGER.info("action complete manufacturer=%s action=%s", profile.manufacturer.value, name)

    async def run_generic(self) -> None:
        profile = self._require_profile()
        action = profile.unified
        if action is None:
            raise InvalidTransitionError(f"{profile.label} runs its steps one at a time")
        self._require_documentation()

        with self._processing(action.endpoint):
            payload = await self._call(action)
            self._apply_response(action, payload, overwrite_empty=True)

        furthest = WorkflowStep.STEP5_DECODER.position
        for step in profile.review_steps:
            if self.state.has_step_data(step):
                furthest = max(furthest, step.position)
        self.state.furthest_index = furthest
        self.state.current_index = WorkflowStep.STEP1_COMPOSITE.position
        LOGGER.info("generic run complete furthest=%s", WORKFLOW_STEPS[furthest].value)

    async def refine_decoder_with_feedback(self, feedback: str | None = None) -> str:
        """Ask the refinement function to rewrite the decoder; returns the notes."""

        profile = self._require_profile()
        artifacts = self.state.artifacts
        if feedback is not None:
            artifacts.refinement_feedback = feedback
        if not artifacts.decoder_code:
            raise InvalidTransitionError("Generate a decoder first before refining")

        body: dict[str, Any] = {"manufacturer": profile.manufacturer.value}
        if artifacts.documentation:
            body["documentation"] = artifacts.documentation
        body["currentDecoderCode"] = artifacts.decoder_code
        if artifacts.refinement_feedback:
            body["userFeedback"] = artifacts.refinement_feedback
        for item in profile.refine_fields:
            value = getattr(artifacts, item.source)
            if value:
                body[item.key] = value

        with self._processing("RefineDecoder"):
            payload = await self._api.call_endpoint(
                resolve_refine_credentials(self._settings),
                "RefineDecoder",
                body,
                label="decoder refinement",
            )
            refined = response_field(payload, "refinedDecoderCode")
            if not refined:
                raise ApiCallError("RefineDecoder returned no refined decoder code")
            artifacts.decoder_code = _as_text(refined)
            artifacts.refinement_notes = _as_text(response_field(payload, "refinementNotes"))
        LOGGER.info("decoder refined manufacturer=%s", profile.manufacturer.value)
        return artifacts.refinement_notes

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------
    def _navigable_steps(self) -> tuple[WorkflowStep, ...]:
        profile = self.state.profile
        steps = profile.visited_steps if profile else (WorkflowStep.SELECT_MANUFACTURER,)
        return tuple(step for step in steps if step not in _NOT_NAVIGABLE)

    def navigate(self, target: int | WorkflowStep | str) -> bool:
        if self._busy or self.extracting:
            return False
        index = target if isinstance(target, int) else WorkflowStep(target).position
        if 0 <= index < len(WORKFLOW_STEPS) and WORKFLOW_STEPS[index] in _NOT_NAVIGABLE:
            return False
        return self.state.navigate_to(index)

    def next_step(self) -> bool:
        if self._busy or self.extracting:
            return False
        for step in self._navigable_steps():
            if step.position > self.state.current_index:
                return self.state.navigate_to(step.position)
        return False

    def previous_step(self) -> bool:
        if self._busy or self.extracting:
            return False
        for step in reversed(self._navigable_steps()):
            if step.position < self.state.current_index:
                return self.state.navigate_to(step.position)
        return False

    def reset(self) -> None:
        self._poller.cancel_all()
        self.state.reset()
        self.last_error = None
        self._evidence_write_url = ""
        self._extraction_task = None
        self._extraction_error = None
        LOGGER.info("workflow reset")

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------
    def snapshot(self) -> dict[str, object]:
        state = self.state
        profile = state.profile
        steps = []
        for step in profile.visited_steps if profile else (WorkflowStep.SELECT_MANUFACTURER,):
            steps.append(
                {
                    "id": step.value,
                    "index": step.position,
                    "title": STEP_TITLES[step],
                    "reachable": step.position <= state.furthest_index,
                    "current": step.position == state.current_index,
                    "has_data": state.has_step_data(step),
                }
            )
        return {
            "manufacturer": state.manufacturer.value if state.manufacturer else None,
            "label": profile.label if profile else None,
            "step": state.step.value,
            "step_title": STEP_TITLES[state.step],
            "current_index": state.current_index,
            "furthest_index": state.furthest_index,
            "acquisition_mode": state.acquisition_mode.value,
            "job_id": state.job_id or None,
            "poll_count": state.poll_count,
            "extracting": self.extracting,
            "busy": self._busy,
            "last_error": self.last_error,
            "steps": steps,
            "artifacts": state.artifacts.to_dict(),
        }


__all__ = ["DecoderWorkflowService", "EDITABLE_ARTIFACTS", "EXTRACTION_POLL"]
