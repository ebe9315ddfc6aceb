from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response

from eliot_admin.application import ArtifactGenerationService, Console
from eliot_admin.errors import FormError
from eliot_admin.routes.deps import get_console

router = APIRouter(prefix="/artifacts/sessions", tags=["artifacts"])

_MEDIA_TYPES = {"result_json": "application/json"}


def _service(session_id: str, console: Console) -> ArtifactGenerationService:
    return console.artifact_jobs.get(session_id)


def _render(session_id: str, service: ArtifactGenerationService) -> dict:
    return {"session_id": session_id, **service.snapshot()}


@router.post("")
async def create_session(console: Console = Depends(get_console)) -> dict:
    session_id, service = console.artifact_jobs.create(console.new_artifact_job)
    return _render(session_id, service)


@router.get("/{session_id}")
async def get_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    return _render(session_id, _service(session_id, console))


@router.delete("/{session_id}")
async def delete_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    console.artifact_jobs.remove(session_id).reset()
    return {"session_id": session_id, "deleted": True}


@router.post("/{session_id}/upload")
async def upload_document(
    session_id: str,
    file: UploadFile = File(...),
    console: Console = Depends(get_console),
) -> dict:
    service = _service(session_id, console)
    try:
        if file.content_type != "application/pdf":
            raise FormError("Please select a PDF file")
        data = await file.read()
    finally:
        await file.close()
    await service.upload(data)
    return _render(session_id, service)


@router.post("/{session_id}/wait")
async def wait(session_id: str, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    await service.wait()
    return _render(session_id, service)


@router.post("/{session_id}/evidence/reload")
async def reload_evidence(session_id: str, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    await service.reload_evidence()
    return _render(session_id, service)


@router.put("/{session_id}/evidence")
async def edit_evidence(session_id: str, payload: dict, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    text = payload.get("text")
    if not isinstance(text, str):
        raise FormError("text is required")
    service.edit_evidence(text)
    return _render(session_id, service)


@router.post("/{session_id}/evidence/revert")
async def revert_evidence(session_id: str, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    service.revert_evidence()
    return _render(session_id, service)


@router.post("/{session_id}/evidence/save")
async def save_evidence(session_id: str, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    await service.save_evidence()
    return _render(session_id, service)


@router.post("/{session_id}/generate")
async def start_generation(session_id: str, payload: dict | None = None, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    body = payload or {}
    await service.start_generation(
        output_type=body.get("outputType"),
        general_prompt=body.get("generalPrompt"),
        special_prompt=body.get("specialPrompt"),
    )
    return _render(session_id, service)


@router.post("/{session_id}/links/refresh")
async def refresh_links(session_id: str, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    await service.refresh_links()
    return _render(session_id, service)


@router.get("/{session_id}/download/{kind}")
async def download(session_id: str, kind: str, console: Console = Depends(get_console)) -> Response:
    service = _service(session_id, console)
    filename, content = await service.download(kind)
    return Response(
        content=content,
        media_type=_MEDIA_TYPES.get(kind, "text/plain"),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{session_id}/reset")
async def reset_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    service = _service(session_id, console)
    service.reset()
    return _render(session_id, service)
