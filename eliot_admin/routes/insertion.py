from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from eliot_admin.application import Console, InsertionForm, InsertionSession
from eliot_admin.application.model_insertion import parse_attributes
from eliot_admin.errors import FormError
from eliot_admin.routes.deps import get_console

router = APIRouter(prefix="/insertions", tags=["insertion"])


def _render(session_id: str, session: InsertionSession) -> dict:
    result = session.result
    return {
        "session_id": session_id,
        "sql": session.sql,
        "unknownKeys": result.unknown_keys,
        "mapped": [item.to_wire() for item in session.mapped],
        "additional": [item.to_wire() for item in session.additional],
        "platformIds": session.platform_ids,
        "templateSource": result.template_source.model_dump(by_alias=True) if result.template_source else None,
    }


@router.post("")
async def submit(payload: dict, console: Console = Depends(get_console)) -> dict:
    try:
        form = InsertionForm.model_validate(payload)
    except ValidationError as exc:
        raise FormError(f"Invalid form: {exc.errors()[0]['msg']}") from exc
    session = await console.insertion.submit(form)
    session_id = console.insertions.create(lambda: session)[0]
    return _render(session_id, session)


@router.get("/{session_id}")
async def get_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    return _render(session_id, console.insertions.get(session_id))


@router.delete("/{session_id}")
async def delete_session(session_id: str, console: Console = Depends(get_console)) -> dict:
    console.insertions.remove(session_id)
    return {"session_id": session_id, "deleted": True}


@router.post("/{session_id}/missing-attributes")
async def add_missing_attributes(session_id: str, console: Console = Depends(get_console)) -> dict:
    session = console.insertions.get(session_id)
    added = session.add_missing_attributes()
    return {**_render(session_id, session), "added": [item.attribute_name for item in added]}


@router.put("/{session_id}/attributes")
async def replace_attributes(session_id: str, payload: dict, console: Console = Depends(get_console)) -> dict:
    session = console.insertions.get(session_id)
    if "mapped" in payload:
        session.mapped = parse_attributes(payload["mapped"])
    if "additional" in payload:
        session.additional = parse_attributes(payload["additional"])
    return _render(session_id, session)


@router.post("/{session_id}/platforms/{platform_id}")
async def toggle_platform(session_id: str, platform_id: int, console: Console = Depends(get_console)) -> dict:
    session = console.insertions.get(session_id)
    session.toggle_platform(platform_id)
    return _render(session_id, session)


@router.post("/{session_id}/sql")
async def rebuild_sql(session_id: str, console: Console = Depends(get_console)) -> dict:
    session = console.insertions.get(session_id)
    session.rebuild_sql()
    return _render(session_id, session)
