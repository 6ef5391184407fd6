"""FastAPI application for the settlement core's HTTP surface."""

import logging

from fastapi import FastAPI

from . import __version__
from .core.config import settings
from .errors import register_error_handlers
from .routes import health, paystack_webhooks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="IqraQuest Settlement",
        description="Escrow, payout and payment gateway reconciliation",
        version=__version__,
    )
    register_error_handlers(app)
    app.include_router(health.router)
    app.include_router(paystack_webhooks.router)
    logger.info("Settlement API configured", extra={"environment": settings.environment})
    return app


app = create_app()
