from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

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
from eliot_admin.infrastructure.document_intelligence import DocumentIntelligenceClient

BASE = "https://func.example"


class FakeClock:
    """Monotonic clock that only moves when the poll loop sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _client(handler, clock: FakeClock | None = None) -> DocumentIntelligenceClient:
    clock = clock or FakeClock()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DocumentIntelligenceClient(BASE, "secret", http_client=http_client, clock=clock, sleep=clock.sleep)


def test_upload_document_posts_pdf_with_function_key():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["key"] = request.headers["x-functions-key"]
        captured["type"] = request.headers["content-type"]
        captured["body"] = request.content
        return httpx.Response(200, json={"ok": True, "id": "job-1", "status": "Uploaded"})

    job = asyncio.run(_client(handler).upload_document(b"%PDF-1.7"))

    assert job.id == "job-1"
    assert captured == {
        "url": f"{BASE}/api/CreateJobAndUpload",
        "key": "secret",
        "type": "application/pdf",
        "body": b"%PDF-1.7",
    }


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(500), "Upload failed: Internal Server Error"),
        (httpx.Response(200, json={"ok": False, "id": "job-1"}), "Invalid response from server"),
        (httpx.Response(200, json={"ok": True}), "Invalid response from server"),
    ],
)
def test_upload_document_failures(response, message):
    client = _client(lambda request: response)

    with pytest.raises(UploadError, match=message):
        asyncio.run(client.upload_document(b"%PDF"))


def test_load_evidence_refreshes_expired_link_once():
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/api/job/job-1":
            return httpx.Response(200, json={"id": "job-1", "status": "Extracted", "evidenceReadUrl": "https://blob/new.md"})
        if request.url.host == "blob" and request.url.path == "/new.md":
            return httpx.Response(200, text="# evidence")
        return httpx.Response(403)

    async def scenario() -> str:
        client = _client(handler)
        job = await client.get_job("job-1")
        job.evidence_read_url = "https://blob/old.md"
        return await client.load_evidence_text(job)

    text = asyncio.run(scenario())

    assert text == "# evidence"
    assert calls == ["/api/job/job-1", "/old.md", "/api/job/job-1", "/new.md"]


def test_load_evidence_gives_up_after_one_refresh():
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path.startswith("/api/job/"):
            return httpx.Response(200, json={"id": "job-1", "status": 3, "evidenceReadUrl": "https://blob/e.md"})
        return httpx.Response(403)

    async def scenario() -> str:
        client = _client(handler)
        job = await client.get_job("job-1")
        return await client.load_evidence_text(job)

    with pytest.raises(EvidenceLoadError, match="Failed to load evidence"):
        asyncio.run(scenario())
    assert calls.count("/e.md") == 2
    assert calls.count("/api/job/job-1") == 2


def test_save_evidence_uses_block_blob_headers_and_refreshes_on_403():
    puts: list[tuple[str, str, bytes]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            puts.append((request.url.path, request.headers["x-ms-blob-type"], request.content))
            if request.url.path == "/stale.md":
                return httpx.Response(403)
            assert request.headers["content-type"] == "text/markdown; charset=utf-8"
            return httpx.Response(201)
        return httpx.Response(200, json={"id": "job-1", "status": 3, "evidenceWriteUrl": "https://blob/fresh.md"})

    written_to = asyncio.run(_client(handler).save_evidence_text("job-1", "https://blob/stale.md", "édité"))

    assert written_to == "https://blob/fresh.md"

    assert puts == [
        ("/stale.md", "BlockBlob", "édité".encode("utf-8")),
        ("/fresh.md", "BlockBlob", "édité".encode("utf-8")),
    ]


def test_save_evidence_fails_without_refreshed_url():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "PUT":
            return httpx.Response(403)
        return httpx.Response(200, json={"id": "job-1", "status": 3})

    with pytest.raises(EvidenceSaveError, match="Could not refresh write URL"):
        asyncio.run(_client(handler).save_evidence_text("job-1", "https://blob/stale.txt", "x"))


def test_poll_until_reports_each_tick_and_returns_matching_job():
    statuses = iter([2, 2, 3])
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        payload = {"id": "job-1", "status": status}
        if status == 3:
            payload["evidenceReadUrl"] = "https://blob/e.md"
        return httpx.Response(200, json=payload)

    clock = FakeClock()
    client = _client(handler, clock)

    job = asyncio.run(
        client.poll_until("job-1", lambda current: current.has_evidence, lambda current: seen.append(current.status))
    )

    assert job.has_evidence
    assert len(seen) == 3
    assert clock.sleeps == [2.0, 2.0]


def test_poll_until_raises_job_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "job-1", "status": "Failed", "error": "Unreadable PDF"})

    with pytest.raises(JobFailedError, match="Unreadable PDF"):
        asyncio.run(_client(handler).poll_until("job-1", lambda current: current.has_evidence))


def test_poll_until_retries_failed_ticks():
    responses = iter(
        [
            httpx.Response(500),
            httpx.ConnectError("connection refused"),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"id": "job-1", "status": 5, "fullDecoderUrl": "https://blob/f.cs"}),
        ]
    )
    clock = FakeClock()
    def handler(request: httpx.Request) -> httpx.Response:
        response = next(responses)
        if isinstance(response, Exception):
            raise response
        return response

    client = _client(handler, clock)

    job = asyncio.run(client.poll_until("job-1", lambda current: current.has_artifacts))

    assert job.full_decoder_url == "https://blob/f.cs"
    assert clock.now == 6.0


def test_poll_until_times_out_after_budget_and_not_before():
    ticks: list[float] = []
    clock = FakeClock()

    def handler(request: httpx.Request) -> httpx.Response:
        ticks.append(clock.now)
        return httpx.Response(200, json={"id": "job-1", "status": "Extracting"})

    client = _client(handler, clock)

    with pytest.raises(PollTimeoutError):
        asyncio.run(client.poll_until("job-1", lambda current: current.has_evidence, timeout=300, interval=2))

    assert len(ticks) == 150
    assert ticks[-1] == 298.0
    assert clock.now == 300.0


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


JOB = Job(
    id="job-1",
    status="Extracted",
    evidence_read_url="https://blob/e.md",
    evidence_write_url="https://blob/e.md?sig=w",
    full_decoder_url="https://blob/f.cs",
)


@pytest.mark.parametrize(
    ("call", "error", "message"),
    [
        (lambda client: client.upload_document(b"%PDF"), UploadError, "Upload failed"),
        (lambda client: client.get_job("job-1"), JobLookupError, "Failed to get job"),
        (
            lambda client: client.start_generation("job-1", output_type="csharp", general_prompt="p"),
            GenerationStartError,
            "Generation failed",
        ),
        (lambda client: client.load_evidence_text(JOB), EvidenceLoadError, "Failed to load evidence"),
        (lambda client: client.save_evidence_text("job-1", "https://blob/e.md", "x"), EvidenceSaveError, "Save failed"),
        (lambda client: client.download_artifact(JOB, "full_decoder"), ArtifactDownloadError, "Download failed"),
    ],
)
def test_connection_failures_raise_typed_errors(call, error, message):
    client = _client(_unreachable)

    with pytest.raises(error, match=message) as excinfo:
        asyncio.run(call(client))
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_refresh_failure_during_download_is_a_download_error():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "blob":
            return httpx.Response(403)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ArtifactDownloadError, match="Download failed"):
        asyncio.run(_client(handler).download_artifact(JOB, "full_decoder"))
