"""HTTP entry point — FastAPI app for the order bridge.

Run with ``uvicorn orderbridge.serve:app`` or ``python -m orderbridge.serve``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from orderbridge import __version__
from orderbridge.config import Settings, get_settings
from orderbridge.security.middleware import install_security_middleware
from orderbridge.webhooks.handlers import register_webhook_routes

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the app: webhook routes, then rate limiting."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(title="Order Bridge", version=__version__)
    register_webhook_routes(app)
    install_security_middleware(app, settings)
    return app


app = create_app()


if __name__ == "__main__":
    import sys

    import uvicorn

    port = 8000
    for i, arg in enumerate(sys.argv):
        if arg == "--port" and i + 1 < len(sys.argv):
            port = int(sys.argv[i + 1])
    uvicorn.run("orderbridge.serve:app", host="0.0.0.0", port=port)
