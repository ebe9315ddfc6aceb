"""Extraction/generation jobs tracked by the document-intelligence service."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    UPLOADED = "Uploaded"
    EXTRACTING = "Extracting"
    EXTRACTED = "Extracted"
    GENERATING = "Generating"
    DONE = "Done"
    FAILED = "Failed"


# Older deployments of the job service report status as an integer.
_STATUS_CODES: dict[int, JobStatus] = {
    0: JobStatus.UPLOADED,
    1: JobStatus.UPLOADED,
    2: JobStatus.EXTRACTING,
    3: JobStatus.EXTRACTED,
    4: JobStatus.GENERATING,
    5: JobStatus.DONE,
    6: JobStatus.FAILED,
}

ARTIFACT_KINDS: tuple[str, ...] = ("result_json", "full_decoder", "console_decoder")


def map_status_code(status_code: int | str) -> JobStatus | str:
    """Normalise a numeric status code; strings are returned unchanged.

    Unknown integers map to ``Failed``.
    """

    if isinstance(status_code, str):
        return status_code
    return _STATUS_CODES.get(status_code, JobStatus.FAILED)


def _coerce_status(value: Any) -> JobStatus | str:
    mapped = map_status_code(value) if isinstance(value, (int, str)) and not isinstance(value, bool) else JobStatus.FAILED
    if isinstance(mapped, JobStatus):
        return mapped
    try:
        return JobStatus(mapped)
    except ValueError:
        return mapped


@dataclass(slots=True)
class Job:
    """Snapshot of a remote job; URLs are time-limited SAS links."""

    id: str
    status: JobStatus | str
    ok: bool = True
    error: str | None = None
    evidence_read_url: str | None = None
    evidence_write_url: str | None = None
    evidence_md_url: str | None = None
    evidence_txt_url: str | None = None
    result_json_url: str | None = None
    full_decoder_url: str | None = None
    console_decoder_url: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Job":
        """Build a job from the service response, accepting either key casing."""

        status_raw = data.get("Status")
        if status_raw is None:
            status_raw = data.get("status")
        error = data.get("Error")
        if error is None:
            error = data.get("error")
        ok = data.get("ok")

        return cls(
            id=str(data.get("Id") or data.get("id") or ""),
            status=_coerce_status(status_raw),
            ok=True if ok is None else bool(ok),
            error=error,
            evidence_read_url=data.get("evidenceReadUrl"),
            evidence_write_url=data.get("evidenceWriteUrl"),
            evidence_md_url=data.get("evidenceMdUrl"),
            evidence_txt_url=data.get("evidenceTxtUrl"),
            result_json_url=data.get("resultJsonUrl"),
            full_decoder_url=data.get("fullDecoderUrl"),
            console_decoder_url=data.get("consoleDecoderUrl"),
        )

    @property
    def readable_evidence_url(self) -> str | None:
        return self.evidence_read_url or self.evidence_md_url or self.evidence_txt_url

    @property
    def has_evidence(self) -> bool:
        return bool(self.readable_evidence_url)

    @property
    def has_artifacts(self) -> bool:
        return bool(self.result_json_url or self.full_decoder_url or self.console_decoder_url)

    @property
    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED or bool(self.error)

    def artifact_url(self, kind: str) -> str | None:
        if kind not in ARTIFACT_KINDS:
            raise ValueError(f"unknown artifact kind: {kind}")
        return getattr(self, f"{kind}_url")

    def to_dict(self) -> dict[str, Any]:
        status = self.status.value if isinstance(self.status, JobStatus) else self.status
        return {
            "id": self.id,
            "status": status,
            "ok": self.ok,
            "error": self.error,
            "hasEvidence": self.has_evidence,
            "hasArtifacts": self.has_artifacts,
        }


__all__ = ["ARTIFACT_KINDS", "Job", "JobStatus", "map_status_code"]
