from __future__ import annotations

import uvicorn

from autoscan.api import create_api_app
from autoscan.core.config import settings


app = create_api_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )
