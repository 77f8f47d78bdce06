"""
FastAPI Dependencies - access to the startup-built webhook dispatcher.
"""

from fastapi import HTTPException, Request, status
from structlog import get_logger

from app.services.webhook_dispatcher import WebhookDispatcher

logger = get_logger(__name__)


def get_dispatcher(request: Request) -> WebhookDispatcher:
    """
    Return the dispatcher created in the application lifespan.

    Raises 503 if the application has not finished starting up.
    """
    dispatcher: WebhookDispatcher | None = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        logger.error("webhook_dispatcher_not_initialized", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready",
        )
    return dispatcher
