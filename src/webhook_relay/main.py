"""webhook-relay - FastAPI application.

Exposes the outbound webhook integration: delivery statistics,
configuration checks and manual event dispatch.
"""

from fastapi import FastAPI

from . import __version__
from .webhooks import router as webhooks_router

app = FastAPI(
    title="webhook-relay",
    description="Reliable outbound webhook delivery for booking and contract events.",
    version=__version__,
)

app.include_router(webhooks_router.router)


@app.on_event("startup")
async def startup_event():
    """Initialize logging on startup."""
    from .core.logging_config import setup_logging
    setup_logging()


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint returning service info.

    Returns:
        dict: Status and welcome message.
    """
    return {
        "status": "ok",
        "message": "Welcome to webhook-relay",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint for monitoring and load balancers."""
    return {"status": "healthy"}
