from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime
import logging
import uvicorn

from core.config import settings
from core.exceptions import AppException, app_exception_handler, global_exception_handler
from core.geo import NullAddressResolver
from core.logging import setup_logging
from core.notifications import DefaultNotifier
from database import init_db
from routers import orders, deliveries, delivery_agents, shops, addresses, notifications

logger = logging.getLogger(__name__)

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Order requests, stock reconciliation and delivery dispatch for a local marketplace",
        version=settings.APP_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc"
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Ports; tests swap these for fakes
    app.state.notifier = DefaultNotifier()
    app.state.address_resolver = NullAddressResolver()

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    for module in (orders, deliveries, delivery_agents, shops, addresses, notifications):
        app.include_router(module.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "timestamp": datetime.now().isoformat()
        }

    @app.on_event("startup")
    async def startup_event():
        """Initialize logging and database on startup"""
        setup_logging()
        await init_db()
        logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} is ready")

    return app

app = create_app()

# =================== MAIN ENTRY POINT ===================

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
