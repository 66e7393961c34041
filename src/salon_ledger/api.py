"""HTTP surface: one read endpoint, one write endpoint, and a health check.

Both endpoints answer ``200`` with the ``{"status": ...}`` envelope whether
the action succeeded or not; callers branch on ``status``. Only a failure
outside the router (a crash in the framework glue) produces a ``500``, and
even that carries the envelope.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import log, router
from .service import RuntimeContext


def create_app(context: RuntimeContext) -> FastAPI:
    """Build the application bound to ``context``."""

    app = FastAPI(title="Salon Ledger", version="1.0.0")
    app.state.context = context

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        log.warning("Malformed request to %s %s", request.method, request.url.path)
        return JSONResponse(status_code=400, content={"status": "error", "message": "Request body must be valid JSON"})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"status": "error", "message": str(exc)})

    @app.get("/health", tags=["Health Check"])
    def health_check() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/")
    def read(request: Request) -> Dict[str, Any]:
        """Serve ``?action=...`` reads; an unknown action lists sales."""

        params = dict(request.query_params)
        result = router.dispatch_read(app.state.context, params.get("action"), params)
        return router.to_envelope(result)

    @app.post("/")
    def write(body: Any = Body(None)) -> Dict[str, Any]:
        """Serve writes named by the ``action`` field of the JSON body."""

        result = router.dispatch_write(app.state.context, body)
        return router.to_envelope(result)

    return app
