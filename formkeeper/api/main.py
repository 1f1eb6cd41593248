"""
formkeeper.api.main — FastAPI application entry point
======================================================

The app is served by the bot process (see
:meth:`formkeeper.bot.core.FormKeeperBot.setup_hook`), which passes in its
own :class:`~formkeeper.services.forms_service.FormsService`.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from formkeeper.api.routes.forms import router as forms_router  # noqa: E402
from formkeeper.api.routes.public import router as public_router  # noqa: E402
from formkeeper.services.forms_service import FormsService  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    forms: FormsService | None = app.state.forms
    if forms is None:
        logger.warning("FormKeeper API started without a forms service; requests will get 503")
    else:
        logger.info("FormKeeper API started — engine ready (%s)", forms.engine.url.database)
    yield
    logger.info("FormKeeper API shutting down")


def create_app(forms: FormsService | None = None) -> FastAPI:
    """Build the API.

    *forms* must wrap a logged-in client: submissions and reviews resolve
    guilds through it.
    """
    app = FastAPI(
        title="FormKeeper Dashboard API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.forms = forms

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(public_router, prefix="/api")
    app.include_router(forms_router, prefix="/api")

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    return app

