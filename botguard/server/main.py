"""ASGI entry point.

Run with ``uvicorn botguard.server.main:app`` or ``python -m botguard.server.main``.
"""

import uvicorn

from botguard.config import Settings
from botguard.server.app import create_app

settings = Settings.from_env()
app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
