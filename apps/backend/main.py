from dotenv import load_dotenv

# Config modules read the environment at import time
load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import os
import logging
import traceback

from app.config import Capabilities, get_env_presence, is_dev
from app.db_config import db_config
from app.scrape import router as scrape_router
from app.agents import router as agents_router
from app.rate_limit import limiter
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifecycle events."""
    env = os.getenv("REVIEWHARVEST_ENV", "production").lower()
    if env == "dev":
        logger.info("[reviewharvest] env: REVIEWHARVEST_ENV=dev (detailed errors, env route enabled)")
    else:
        logger.info(f"[reviewharvest] env: REVIEWHARVEST_ENV={env}")

    if not Capabilities.is_renderer_enabled():
        logger.warning("[reviewharvest] BROWSERLESS_API_KEY not set; crawls will fail until it is configured")

    # Start recurring agent scheduler
    from orchestrator import start_scheduler, stop_scheduler
    try:
        if db_config.is_db_enabled:
            await start_scheduler(db_config.db_url)
        else:
            logger.warning("[scheduler] No PostgreSQL database URL configured (need SUPABASE_DB_URL or DATABASE_URL), scheduler not started")
    except Exception as e:
        logger.error(f"[scheduler] Failed to start scheduler: {e}")

    yield

    # Shutdown
    try:
        await stop_scheduler()
    except Exception as e:
        logger.error(f"[scheduler] Error stopping scheduler: {e}")


app = FastAPI(title="ReviewHarvest API", version="1.0.0", lifespan=lifespan)

# Add rate limiter state
app.state.limiter = limiter

# Rate limit exceeded handler
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Error masking middleware
@app.middleware("http")
async def error_masking_middleware(request: Request, call_next):
    """Mask detailed errors in production; show full errors in dev."""
    try:
        response = await call_next(request)
        return response
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unhandled error: {str(e)}")
        if is_dev():
            logger.error(traceback.format_exc())
            return JSONResponse(
                status_code=500,
                content={
                    "status": "error",
                    "error": str(e),
                    "traceback": traceback.format_exc()
                }
            )
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "error": "An internal error occurred. Please try again later."
            }
        )


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(scrape_router)
app.include_router(agents_router)


@app.get("/api/healthz")
async def healthz():
    return Capabilities.get_status()


@app.get("/api/capabilities")
async def capabilities():
    return Capabilities.get_capabilities()


@app.get("/admin/config/env")
async def config_env():
    if not is_dev():
        raise HTTPException(status_code=403, detail="Only available in dev mode")
    return get_env_presence()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=is_dev())
