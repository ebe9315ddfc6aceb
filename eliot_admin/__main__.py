from __future__ import annotations

import uvicorn

from eliot_admin.config import get_settings
from eliot_admin.core.logging import configure_logging


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    uvicorn.run("eliot_admin.app:app", host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
