from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from lanrelay.config import RelaySettings
from lanrelay.server.discovery import advertised_base_url
from lanrelay.server.routes import router
from lanrelay.server.state import AppState
from lanrelay.server.store import FILES_PREFIX

logger = logging.getLogger(__name__)


def create_app(settings: RelaySettings | None = None) -> FastAPI:
    """Create a configured lanrelay FastAPI application.

    Args:
        settings: Relay settings; read from the environment when omitted.

    Routes:
        /v1/ws       persistent peer connection
        /v1/health   status and limits
        /v1/address  LAN address discovery
        /files/...   read-only access to received files
        /            optional web UI when ``static_dir`` is set
    """
    if settings is None:
        settings = RelaySettings.from_env()

    base_url = advertised_base_url(settings.port, settings.base_url)
    content_dir = settings.content_dir
    content_dir.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title="lanrelay")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state = AppState.build(settings, base_url)
    app.include_router(router, prefix="/v1")
    app.mount(FILES_PREFIX, StaticFiles(directory=content_dir), name="files")

    # The UI mount catches everything, so it goes last.
    if settings.static_dir is not None:
        app.mount(
            "/", StaticFiles(directory=settings.static_dir, html=True), name="ui"
        )

    logger.debug("Relay advertising %s, storing in %s", base_url, content_dir)
    return app
