"""Liveness and database reachability."""

from __future__ import annotations

from fastapi import APIRouter, Request

from qualmatrix import __version__
from qualmatrix.server.db import ping

router = APIRouter(prefix="/api")


@router.get("/health")
def health(request: Request) -> dict[str, str]:
    """Report the version and whether the result store answers.

    Always answers 200; ``status`` is ``"degraded"`` when the database
    does not respond.
    """
    database_ok = ping(request.app.state.engine)
    return {
        "status": "ok" if database_ok else "degraded",
        "version": __version__,
        "database": "ok" if database_ok else "unavailable",
        "provider": request.app.state.settings.llm_provider,
    }
