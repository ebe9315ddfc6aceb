from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile

from eliot_admin.application import Console, DecoderWorkflowService
from eliot_admin.domain.workflow import WorkflowStep
from eliot_admin.errors import FormError
from eliot_admin.routes.deps import get_console

router = APIRouter(prefix="/decoder/sessions", tags=["decoder"])


def _workflow(session_id: str, console: Console) -> DecoderWorkflowService:
    return console.workflows.get(session_id)


def _render(session_id: str, workflow: DecoderWorkflowService, **extra: object) -> dict:
    return {"session_id": session_id, **workflow.snapshot(), **extra}


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise FormError(f"{key} is required")
    return value


def _step(value: str) -> WorkflowStep:
    try:
        return WorkflowStep(value)
    except ValueError:
        raise FormError(f"Unknown step: {value}") from None


@router.post("")
async def create_session(payload: dict | None = None, console: Console = Depends(get_console)) -> dict:
    session_id, workflow = console.workflows.create(console.new_workflow)
    manufacturer = (payload or {}).get("manufacturer")
    if manufacturer:
        workflow.select_manufacturer(str(manufacturer))
    return _render(session_id, workflow)


@router.get("/{session_id}")
async def get_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    return _render(session_id, _workflow(session_id, console))


@router.delete("/{session_id}")
async def delete_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    console.workflows.remove(session_id).reset()
    return {"session_id": session_id, "deleted": True}


@router.post("/{session_id}/manufacturer")
async def select_manufacturer(session_id: str, payload: dict, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    workflow.select_manufacturer(_text(payload, "manufacturer"))
    return _render(session_id, workflow)


@router.post("/{session_id}/upload")
async def upload_document(
    session_id: str,
    file: UploadFile = File(...),
    console: Console = Depends(get_console),
) -> dict:
    """Upload the datasheet PDF and start extraction in the background."""
    workflow = _workflow(session_id, console)
    try:
        if file.content_type != "application/pdf":
            raise FormError("Please select a PDF file")
        data = await file.read()
    finally:
        await file.close()
    job = await workflow.begin_extraction(data)
    return _render(session_id, workflow, job=job.to_dict())


@router.post("/{session_id}/extraction/wait")
async def wait_for_extraction(session_id: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    await workflow.wait_for_extraction()
    return _render(session_id, workflow)


@router.delete("/{session_id}/extraction")
async def cancel_extraction(session_id: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    cancelled = workflow.cancel_extraction()
    return _render(session_id, workflow, cancelled=cancelled)


@router.post("/{session_id}/documentation")
async def paste_documentation(session_id: str, payload: dict, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    workflow.paste_documentation(_text(payload, "text"))
    return _render(session_id, workflow)


@router.put("/{session_id}/documentation")
async def update_documentation(session_id: str, payload: dict, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    await workflow.update_documentation(_text(payload, "text"))
    return _render(session_id, workflow)


@router.patch("/{session_id}/artifacts")
async def update_artifacts(session_id: str, payload: dict, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    values = {key: value for key, value in payload.items() if isinstance(value, str)}
    if len(values) != len(payload):
        raise FormError("Artifact values must be strings")
    workflow.update_artifacts(values)
    return _render(session_id, workflow)


@router.post("/{session_id}/steps/{step}")
async def run_step(session_id: str, step: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    await workflow.run_step(_step(step))
    return _render(session_id, workflow)


@router.post("/{session_id}/actions/{name}")
async def run_action(session_id: str, name: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    await workflow.run_action(name)
    return _render(session_id, workflow)


@router.post("/{session_id}/generic")
async def run_generic(session_id: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    await workflow.run_generic()
    return _render(session_id, workflow)


@router.post("/{session_id}/refine")
async def refine_decoder(session_id: str, payload: dict | None = None, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    feedback = (payload or {}).get("feedback")
    notes = await workflow.refine_decoder_with_feedback(str(feedback) if feedback is not None else None)
    return _render(session_id, workflow, refinement_notes=notes)


@router.post("/{session_id}/navigate")
async def navigate(session_id: str, payload: dict, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    target = payload.get("target")
    if isinstance(target, bool) or not isinstance(target, (int, str)):
        raise FormError("target must be a step index or step id")
    moved = workflow.navigate(target if isinstance(target, int) else _step(target))
    return _render(session_id, workflow, moved=moved)


@router.post("/{session_id}/next")
async def next_step(session_id: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    moved = workflow.next_step()
    return _render(session_id, workflow, moved=moved)


@router.post("/{session_id}/previous")
async def previous_step(session_id: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    moved = workflow.previous_step()
    return _render(session_id, workflow, moved=moved)


@router.post("/{session_id}/reset")
async def reset_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    workflow = _workflow(session_id, console)
    workflow.reset()
    return _render(session_id, workflow)
