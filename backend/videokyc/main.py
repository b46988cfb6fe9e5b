"""
FastAPI Application Entry Point
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from videokyc.api.v1.routes import api_router
from videokyc.core.config import Settings

logger = logging.getLogger(__name__)

settings = Settings()


async def expire_stale_calls_periodically(interval_seconds: float, max_age_seconds: float) -> None:
    """Close live call requests nobody answered"""
    from videokyc.api.v1.dependencies import get_call_store

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            store = await get_call_store()
            await store.expire_stale_calls(max_age_seconds)
        except Exception as e:
            logger.error(f"Stale call sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates configuration
    - Starts the stale call sweep

    Shutdown:
    - Cancels the sweep
    """
    logger.info("Starting Video KYC service...")

    strict_validation = settings.environment == "production"

    from videokyc.api.v1.dependencies import get_config
    from videokyc.core.validation import validate_config_on_startup

    config = get_config()
    try:
        validate_config_on_startup(config, strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

    video_kyc = config.video_kyc()
    sweep_task = asyncio.create_task(expire_stale_calls_periodically(
        video_kyc.expiry_scan_interval_seconds,
        video_kyc.stale_call_timeout_seconds,
    ))

    logger.info("Video KYC service started successfully")

    yield

    logger.info("Shutting down Video KYC service...")
    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass
    logger.info("Video KYC service shutdown complete")


app = FastAPI(
    title="Video KYC",
    description="Video identity verification calls between users and verifiers",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": "Video KYC API", "status": "running"}


@app.get("/health")
async def health_check():
    """Basic health status plus signaling hub activity"""
    from videokyc.api.v1.dependencies import get_signaling_hub

    hub = get_signaling_hub()
    return {
        "status": "healthy",
        "environment": settings.environment,
        "signaling_channels": len(hub.active_channels()),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
