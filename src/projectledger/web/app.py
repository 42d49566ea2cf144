"""FastAPI application factory for the HTTP API."""

from pathlib import Path

from fastapi import FastAPI, Request

from projectledger import __version__
from projectledger.config import Config, load_config
from projectledger.logging import bind_request_context, clear_request_context, configure_logging
from projectledger.web.errors import register_exception_handlers


def create_app(config_path: Path | None = None, config: Config | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config_path: Path to the configuration file.
        config: Already-loaded configuration; takes precedence over config_path.

    Returns:
        Configured FastAPI application.
    """
    config = config or load_config(config_path)

    configure_logging(config)

    app = FastAPI(
        title="Project Ledger",
        description="Project tracking and billing",
        version=__version__,
    )
    app.state.config = config

    register_exception_handlers(app)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        """Tag log and audit events with the request and caller."""
        request_id = bind_request_context(
            request.method,
            request.url.path,
            actor=request.headers.get(config.web.identity_header),
            request_id=request.headers.get("X-Request-ID"),
        )
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    from projectledger.web.routes import hierarchy, invoices, me, payments, projects, tracking

    app.include_router(tracking.router)
    app.include_router(projects.router)
    app.include_router(hierarchy.router)
    app.include_router(invoices.router)
    app.include_router(payments.router)
    app.include_router(me.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    return app
