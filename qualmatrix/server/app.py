"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from fastapi import FastAPI

from qualmatrix.config import QualmatrixSettings, load_settings
from qualmatrix.llm.client import LLMClient
from qualmatrix.server.db import create_session_factory, get_engine, init_db
from qualmatrix.server.routes.analysis import router as analysis_router
from qualmatrix.server.routes.health import router as health_router

logger = logging.getLogger(__name__)


def create_app(
    db_url: str | None = None,
    settings: QualmatrixSettings | None = None,
    llm_client_factory: Callable[[QualmatrixSettings], object] | None = None,
    log_dir: Path | None = None,
    verbose: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_url: Override database URL (e.g. "sqlite://" for in-memory tests).
                Falls back to ``settings.db_url``, then the default SQLite path.
        settings: Application settings; loaded from the environment if omitted.
        llm_client_factory: Builds the model client for each request.
                Defaults to :class:`LLMClient`, so a misconfigured provider
                surfaces per request rather than at startup.
        log_dir: When given, writes ``.qualmatrix/qualmatrix.log`` under it.
        verbose: When True, terminal handler shows DEBUG-level messages.
    """
    settings = settings or load_settings()

    if log_dir is not None:
        from qualmatrix.logging import setup_logging

        setup_logging(output_dir=log_dir, verbose=verbose)

    app = FastAPI(title="Qualmatrix", docs_url="/api/docs", redoc_url=None)

    engine = get_engine(db_url or settings.db_url or None)
    init_db(engine)

    # Shared with the route handlers
    app.state.engine = engine
    app.state.db_factory = create_session_factory(engine)
    app.state.settings = settings
    app.state.llm_client_factory = llm_client_factory or LLMClient

    app.include_router(health_router)
    app.include_router(analysis_router)

    logger.info("API ready: provider=%s db=%s", settings.llm_provider, engine.url)
    return app
