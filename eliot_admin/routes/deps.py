from __future__ import annotations

from fastapi import Request

from eliot_admin.application import Console


def get_console(request: Request) -> Console:
    return request.app.state.console
