from __future__ import annotations

import json
import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from eliot_admin.app import create_app
from eliot_admin.config import Settings

INSERTION_SQL = """BEGIN TRAN;
  DECLARE @tpModel nvarchar(200) = N'TP-1';
  SET @deviceModelId = SCOPE_IDENTITY();
COMMIT TRAN;
"""


class Upstream:
    """Every remote service the console talks to, keyed by host."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, bytes]] = []
        self.unreachable: set[str] = set()
        self.finder_response = httpx.Response(
            200,
            json={
                "status": "found",
                "bestMatch": {"manufacturer": "Milesight", "modelName": "EM300-TH", "modelId": "em300"},
                "confidence": 0.92,
            },
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path
        self.requests.append((host, path, request.content))
        if path in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if host == "finder.example":
            return self.finder_response
        if host == "insert.example":
            return httpx.Response(
                200,
                json={"sql": INSERTION_SQL, "unknownKeys": [], "mapped": [{"attributeName": "temperature"}]},
            )
        if host == "func.example":
            if path == "/api/CreateJobAndUpload":
                return httpx.Response(200, json={"ok": True, "id": "job-7"})
            if path == "/api/StartGeneration":
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(
                200,
                json={
                    "id": "job-7",
                    "status": "Done",
                    "evidenceReadUrl": "https://blob.example/job-7/evidence.txt",
                    "fullDecoderUrl": "https://blob.example/job-7/full.cs",
                },
            )
        if host == "blob.example":
            if path.endswith("evidence.txt"):
                return httpx.Response(200, text="extracted datasheet")
            return httpx.Response(200, content=b"public class Decoder {}")
        if host == "decoders.example" and path == "/api/DecoderGenerator":
            return httpx.Response(200, json={"CompositeSpec": "spec", "DecoderCode": "decoder"})
        return httpx.Response(404, json={"error": f"unexpected {host}{path}"})


def _settings(**overrides) -> Settings:
    options = {
        "func_base": "https://func.example",
        "func_key": "f",
        "decoder_base": "https://decoders.example",
        "decoder_key": "d",
        "device_model_finder_url": "https://finder.example/api/find",
        "model_db_insertion_url": "https://insert.example/api/generate",
        "poll_interval": 0.0,
    }
    options.update(overrides)
    return Settings(**options)


@pytest.fixture()
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture()
def client(upstream):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app = create_app(_settings(), http_client=http_client)
    with TestClient(app) as test_client:
        yield test_client


def test_root_landing(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


# ----------------------------------------------------------------------
# proxy
# ----------------------------------------------------------------------


def test_proxy_without_url_returns_500(upstream):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app = create_app(_settings(device_model_finder_url="", model_db_insertion_url=""), http_client=http_client)

    with TestClient(app) as test_client:
        finder = test_client.post("/api/device-model-finder", json={"supplier": "x"})
        insertion = test_client.post("/api/model-db-insertion", json={})

    assert finder.status_code == 500
    assert finder.json() == {"error": "API URL not configured"}
    assert insertion.status_code == 500
    assert upstream.requests == []


def test_proxy_passes_status_and_body_through(client, upstream):
    upstream.finder_response = httpx.Response(404, json={"status": "not_found"})

    response = client.post("/api/device-model-finder", json={"supplier": "Acme", "model": "X1"})

    assert response.status_code == 404
    assert response.json() == {"status": "not_found"}
    host, path, body = upstream.requests[-1]
    assert (host, path) == ("finder.example", "/api/find")
    assert json.loads(body) == {"supplier": "Acme", "model": "X1"}


def test_proxy_reports_upstream_garbage(client, upstream):
    upstream.finder_response = httpx.Response(502, text="<html>bad gateway</html>")

    response = client.post("/api/device-model-finder", json={})

    assert response.status_code == 500
    assert "error" in response.json()


def test_proxy_rejects_non_json_body(client):
    response = client.post("/api/model-db-insertion", content=b"not json", headers={"Content-Type": "text/plain"})

    assert response.status_code == 400


# ----------------------------------------------------------------------
# decoder workflow sessions
# ----------------------------------------------------------------------


def test_generic_session_flow(client, upstream):
    created = client.post("/api/decoder/sessions", json={"manufacturer": "generic"})
    assert created.status_code == 200
    session_id = created.json()["session_id"]
    assert created.json()["step"] == "upload_doc"

    pasted = client.post(f"/api/decoder/sessions/{session_id}/documentation", json={"text": "pasted docs"})
    assert pasted.json()["acquisition_mode"] == "text"

    generated = client.post(f"/api/decoder/sessions/{session_id}/generic")
    body = generated.json()
    assert generated.status_code == 200
    assert body["step"] == "step1_composite"
    assert body["furthest_index"] == 8
    assert body["artifacts"]["decoder_code"] == "decoder"

    moved = client.post(f"/api/decoder/sessions/{session_id}/navigate", json={"target": "step7_feedback"})
    assert moved.json()["moved"] is False
    moved = client.post(f"/api/decoder/sessions/{session_id}/navigate", json={"target": 8})
    assert moved.json()["moved"] is True
    assert moved.json()["step"] == "step5_decoder"


def test_pdf_upload_and_extraction(client):
    session_id = client.post("/api/decoder/sessions", json={"manufacturer": "milesight"}).json()["session_id"]

    uploaded = client.post(
        f"/api/decoder/sessions/{session_id}/upload",
        files={"file": ("sheet.pdf", b"%PDF-1.7", "application/pdf")},
    )
    assert uploaded.status_code == 200
    assert uploaded.json()["job"]["id"] == "job-7"

    waited = client.post(f"/api/decoder/sessions/{session_id}/extraction/wait")
    assert waited.status_code == 200
    assert waited.json()["step"] == "view_doc"
    assert waited.json()["artifacts"]["documentation"] == "extracted datasheet"


def test_upload_requires_pdf(client):
    session_id = client.post("/api/decoder/sessions", json={"manufacturer": "milesight"}).json()["session_id"]

    response = client.post(
        f"/api/decoder/sessions/{session_id}/upload",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Please select a PDF file"}


def test_invalid_transition_maps_to_409(client):
    session_id = client.post("/api/decoder/sessions", json={"manufacturer": "dragino"}).json()["session_id"]

    response = client.post(f"/api/decoder/sessions/{session_id}/steps/step1_composite")

    assert response.status_code == 409
    assert "Composite Spec" in response.json()["error"]


def test_upstream_failure_maps_to_502(client):
    session_id = client.post("/api/decoder/sessions", json={"manufacturer": "dragino"}).json()["session_id"]
    client.post(f"/api/decoder/sessions/{session_id}/upload", files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    client.post(f"/api/decoder/sessions/{session_id}/extraction/wait")

    response = client.post(f"/api/decoder/sessions/{session_id}/steps/step2_rules")

    assert response.status_code == 502
    assert response.json()["upstream_status"] == 404
    assert client.get(f"/api/decoder/sessions/{session_id}").json()["last_error"] == response.json()["error"]


def test_unknown_session_is_404(client):
    response = client.get("/api/decoder/sessions/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Unknown decoder session: nope"}


def test_deleted_session_is_gone(client):
    session_id = client.post("/api/decoder/sessions").json()["session_id"]

    assert client.delete(f"/api/decoder/sessions/{session_id}").json()["deleted"] is True
    assert client.get(f"/api/decoder/sessions/{session_id}").status_code == 404


# ----------------------------------------------------------------------
# artifact generation
# ----------------------------------------------------------------------


def test_artifact_download(client):
    session_id = client.post("/api/artifacts/sessions").json()["session_id"]

    client.post(f"/api/artifacts/sessions/{session_id}/upload", files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    waited = client.post(f"/api/artifacts/sessions/{session_id}/wait").json()
    assert waited["stage"] == "editing"
    assert waited["evidence"] == "extracted datasheet"

    client.post(f"/api/artifacts/sessions/{session_id}/generate", json={"outputType": "csharp"})
    assert client.post(f"/api/artifacts/sessions/{session_id}/wait").json()["stage"] == "done"

    download = client.get(f"/api/artifacts/sessions/{session_id}/download/full_decoder")
    assert download.status_code == 200
    assert download.content == b"public class Decoder {}"
    assert download.headers["content-disposition"] == 'attachment; filename="fullDecoder.cs"'


def test_unreachable_job_service_maps_to_502(client, upstream):
    session_id = client.post("/api/artifacts/sessions").json()["session_id"]
    client.post(f"/api/artifacts/sessions/{session_id}/upload", files={"file": ("a.pdf", b"%PDF", "application/pdf")})
    client.post(f"/api/artifacts/sessions/{session_id}/wait")
    upstream.unreachable.add("/api/StartGeneration")

    response = client.post(f"/api/artifacts/sessions/{session_id}/generate", json={"outputType": "csharp"})

    assert response.status_code == 502
    assert response.json()["error"].startswith("Generation failed")
    session = client.get(f"/api/artifacts/sessions/{session_id}").json()
    assert session["stage"] == "editing"
    assert session["error"] == response.json()["error"]


# ----------------------------------------------------------------------
# model insertion and tools
# ----------------------------------------------------------------------


def test_insertion_session(client):
    created = client.post(
        "/api/insertions",
        json={
            "decoderName": "Dec",
            "modelName": "EM300",
            "supplier": "Milesight",
            "decodedData": '{"temperature": "21,5", "humidity": 40}',
            "deviceProfile": "EU868",
        },
    )
    assert created.status_code == 200
    session_id = created.json()["session_id"]
    assert created.json()["platformIds"] == [1]

    added = client.post(f"/api/insertions/{session_id}/missing-attributes").json()
    assert added["added"] == ["humidity"]

    client.post(f"/api/insertions/{session_id}/platforms/7")
    rebuilt = client.post(f"/api/insertions/{session_id}/sql").json()
    assert rebuilt["platformIds"] == [1, 7]
    assert "--humidity" in rebuilt["sql"]
    assert "Link to Chirpstack" in rebuilt["sql"]


def test_insertion_requires_every_field(client):
    response = client.post("/api/insertions", json={"decoderName": "Dec"})

    assert response.status_code == 400
    assert response.json()["error"].startswith("Please fill in every field")


def test_tools_json_and_sql(client):
    repaired = client.post("/api/tools/json/repair", json={"text": "{decoderName: string}"}).json()
    assert repaired["data"] == {"decoderName": "example"}

    assert client.post("/api/tools/json/check", json={"text": "{a: 1}"}).json() == {"malformed": True}
    assert client.post("/api/tools/numbers/normalize", json={"text": "35,0"}).json() == {"text": "35.0"}

    broken = client.post("/api/tools/json/repair", json={"text": "{{{"})
    assert broken.status_code == 400

    formatted = client.post("/api/tools/sql/format", json={"sql": "select 1 from t"}).json()["sql"]
    assert formatted == "SELECT 1 \nFROM t"


def test_tools_device_lookup_from_json(client, upstream):
    response = client.post(
        "/api/tools/device-lookup",
        json={"json": '{"manufacturer": "Milesight", "model": "EM300-TH"}'},
    )

    assert response.status_code == 200
    assert response.json()["bestMatch"]["modelName"] == "EM300-TH"
    assert json.loads(upstream.requests[-1][2]) == {"supplier": "Milesight", "model": "EM300-TH"}

    missing = client.post("/api/tools/device-lookup", json={"supplier": "Milesight"})
    assert missing.status_code == 400


def test_reference_tables(client):
    tables = client.get("/api/tools/reference").json()

    assert {"id": 1, "name": "Thingpark"} in tables["platforms"]
    assert tables["notificationTypes"]["M"] == "Measurement"
