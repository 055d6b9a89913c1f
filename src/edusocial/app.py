"""
FastAPI application factory
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import config
from .exceptions import register_exception_handlers
from .logging_config import RequestIDMiddleware, setup_logging
from .billing_routes import router as billing_router
from .engagement_routes import router as engagement_router
from .moderation_routes import router as moderation_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)

    app = FastAPI(title="EduSocial API", version=__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(billing_router)
    app.include_router(moderation_router)
    app.include_router(engagement_router)

    @app.get("/health")
    async def health():
        """Health check for load balancers and monitoring"""
        from .db.engine import SessionLocal
        from .services.health_check import HealthChecker
        from .services.redis_cache import get_kv_store

        result = HealthChecker(SessionLocal, get_kv_store).check_all()
        status_code = 503 if result["status"] == "down" else 200
        return JSONResponse(status_code=status_code, content=result)

    @app.on_event("startup")
    async def on_startup():
        if config.ENABLE_SCHEDULER and config.ENV != "test":
            from .services.scheduled_jobs import start_scheduler
            try:
                start_scheduler()
            except Exception as e:
                logger.error(f"Failed to start background scheduler: {e}", exc_info=True)
        logger.info(f"EduSocial API started (env={config.ENV})")

    @app.on_event("shutdown")
    async def on_shutdown():
        from .services.scheduled_jobs import stop_scheduler
        stop_scheduler()

    return app
