# src/api/errors.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from infrastructure.generation.errors import GenerationError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.error, exc.message)
        else:
            logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.error)
        content = {"error": exc.error, "message": exc.message}
        if exc.details is not None:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
