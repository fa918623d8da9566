"""
FastAPI application for the agent executor.

Usage:
    # Development server with auto-reload
    uvicorn agent_executor.api.main:app --reload --host 0.0.0.0 --port 8000

    # Debug mode (verbose logging)
    LOG_LEVEL=DEBUG uvicorn agent_executor.api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import config
from ..tracing import init_tracing_client, shutdown_tracing
from .dependencies import close_gateway, get_registry
from .routes import agent, health


def configure_logging():
    """Configure logging from the configured level."""
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("agent_executor").setLevel(log_level)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log configuration and manage tracing on startup and shutdown."""
    logger.info("Starting agent executor API server")
    logger.info("=" * 60)
    logger.info("COMPLETION SERVICE")
    logger.info("  Base URL: %s", config.completion.base_url)
    logger.info("  Model: %s", config.completion.model)
    logger.info("  Native tool calls: %s", config.completion.native_tool_calls)
    logger.info("-" * 60)
    logger.info("EXECUTOR LIMITS")
    logger.info("  Max iterations: %d", config.executor.max_iterations)
    logger.info("  Max execution time: %s", config.executor.max_execution_time or "unbounded")
    logger.info("  Transient retries: %d", config.executor.max_transient_retries)
    logger.info("-" * 60)
    logger.info("REGISTERED TOOLS")
    for name, descriptor in get_registry().all_tools().items():
        logger.info("  - %s [%s]", name, descriptor.error_policy.value)

    tracing_client = init_tracing_client(
        public_key=config.langfuse.public_key,
        secret_key=config.langfuse.secret_key,
        host=config.langfuse.host,
        debug=config.langfuse.debug,
    )
    logger.info("-" * 60)
    logger.info("LANGFUSE: %s", "ENABLED" if tracing_client.enabled else "DISABLED")
    if tracing_client.error:
        logger.info("  Reason: %s", tracing_client.error)
    logger.info("=" * 60)

    yield

    logger.info("Shutting down agent executor API server")
    close_gateway()
    shutdown_tracing()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Agent Executor API",
        description="Runs a tool-augmented reasoning loop against a completion service.",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(agent.router, tags=["Agent"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log validation errors before returning a 400 response."""
        logger.warning(
            "Validation error on %s %s: %s", request.method, request.url.path, exc.errors()
        )
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    return app


app = create_app()


def run_server():
    """Run the server using uvicorn."""
    import uvicorn

    uvicorn.run(
        "agent_executor.api.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        workers=1 if config.server.reload else config.server.workers,
    )


if __name__ == "__main__":
    run_server()
