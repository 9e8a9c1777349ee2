from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from correlauth.api.error_handling import register_exception_handlers
from correlauth.api.routes import router
from correlauth.logging import get_logger, set_request_id
from correlauth.service.runtime import Runtime, current_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the FastAPI application.

    With no ``runtime`` the process-wide one from ``get_runtime()`` is used
    on first request.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        active = app.state.runtime or current_runtime()
        if active is None:
            return
        try:
            await active.close()
            logger.info("runtime_cleanup_complete")
        except Exception as exc:
            logger.error("shutdown_failed", error=str(exc))

    app = FastAPI(title="correlauth", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    @app.middleware("http")
    async def add_request_id(request, call_next):
        """Tag logs with X-Request-ID (client supplied or generated) and echo it back."""
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()
