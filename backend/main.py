import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.deps import get_generation_service
from api.errors import register_exception_handlers
from api.routes import api_router

# -------------------------------
# Logging
# -------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

# quiet noisy sub-loggers
for name in ["asyncio", "httpx", "httpcore"]:
    logging.getLogger(name).setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# -------------------------------
# FastAPI lifespan
# -------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === STARTUP ===
    service = get_generation_service()
    await service.start()
    logging.getLogger(__name__).info(
        "generation service started max_active_jobs=%d cli=%s",
        service.config.max_active_jobs,
        service.config.cli_command,
    )

    yield

    # === SHUTDOWN ===
    await service.stop()


# -------------------------------
# FastAPI app
# -------------------------------

app = FastAPI(lifespan=lifespan)
register_exception_handlers(app)


@app.get("/healthz", tags=["infra"])
async def health_check():
    return {"status": "ok"}


app.include_router(api_router, prefix="/api")
