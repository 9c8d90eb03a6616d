"""
Revive API - Main FastAPI Application

Server-side half of the generation/usage system:
- Subscription webhook that reconciles billing events into the usage ledger
- Read-only usage endpoint for clients and support tooling
- Health check
"""

import sys
from pathlib import Path
from contextlib import asynccontextmanager

# Add parent directory to path to import existing modules
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from fastapi import FastAPI

from config import Settings, settings as default_settings
from subscription.billing_client import RevenueCatClient
from subscription.reconciler import SubscriptionEventReconciler
from subscription.usage_ledger import UsageLedger
from utils.logger import logger


def build_services(app: FastAPI) -> None:
    """Create the ledger, billing client and reconciler on app.state"""
    settings: Settings = app.state.settings
    settings.create_directories()

    ledger = UsageLedger(storage_path=settings.LEDGER_FILE, settings=settings)
    billing_client = RevenueCatClient.from_settings(settings)

    app.state.ledger = ledger
    app.state.billing_client = billing_client
    app.state.reconciler = SubscriptionEventReconciler(
        ledger=ledger,
        billing_client=billing_client,
        webhook_secret=settings.WEBHOOK_SECRET,
        entitlement_id=settings.ENTITLEMENT_ID,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events"""
    build_services(app)
    settings = app.state.settings
    logger.info(f"Revive API listening on http://{settings.HOST}:{settings.PORT}")
    if not settings.WEBHOOK_SECRET:
        logger.warning("WEBHOOK_SECRET is not set; subscription webhooks are unauthenticated")
    yield
    await app.state.billing_client.aclose()
    logger.info("Revive API shutting down...")


def create_app(settings: Settings = None) -> FastAPI:
    """Build the FastAPI application"""
    app = FastAPI(
        title="Revive API",
        description="Generation usage metering and subscription reconciliation",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.state.settings = settings or default_settings

    from web_ui.api.routes import webhooks, usage

    app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
    app.include_router(usage.router, prefix="/api/v1/usage", tags=["Usage"])

    @app.get("/")
    async def root():
        """API root endpoint"""
        return {
            "name": "Revive API",
            "version": "1.0.0",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)
