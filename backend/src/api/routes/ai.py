# src/api/routes/ai.py
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import StreamingResponse

from api.deps import get_generation_service
from api.schemas.generation import (
    AIStatusResponse,
    ConsistencyCheckRequest,
    ConsistencyCheckResponse,
    GenerateAccepted,
    GenerationsSnapshotResponse,
    GenerationStatusResponse,
    validate_generation_request,
)
from infrastructure.generation.errors import InvalidRequest
from service.generation import GenerationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/ai", tags=["ai"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-store",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # keep proxies from buffering the stream
}


@router.get("/status", response_model=AIStatusResponse)
async def ai_status(
    force: Optional[str] = Query(None, description="authenticated | unauthenticated (test override)"),
    svc: GenerationService = Depends(get_generation_service),
):
    return AIStatusResponse(**svc.ai_status(force))


@router.post("/generate", status_code=status.HTTP_202_ACCEPTED, response_model=GenerateAccepted)
async def generate(
    request: Request,
    x_test_unauth: Optional[str] = Header(None),
    svc: GenerationService = Depends(get_generation_service),
):
    """
    Validates the request, registers a job and spawns the CLI.
    Responds with the job id before any output exists; read it from /stream/{id}.
    """
    svc.ensure_authenticated(force_unauthenticated=(x_test_unauth or "").lower() == "true")

    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequest("Request body must be JSON")

    result = validate_generation_request(raw)
    if not result.success or result.data is None:
        raise InvalidRequest("Invalid generation request", details=result.errors)

    job = await svc.generate(result.data)
    return GenerateAccepted(id=job.id)


@router.get("/stream/{generation_id}")
async def stream(generation_id: str, svc: GenerationService = Depends(get_generation_service)):
    sub = await svc.subscribe(generation_id)

    async def gen():
        try:
            async for chunk in sub:
                yield chunk
        finally:
            # also runs when the client goes away mid-stream
            svc.unsubscribe(generation_id, sub)
            logger.debug("stream.close job_id=%s dropped=%s", generation_id, sub.dropped)

    return StreamingResponse(gen(), media_type="text/plain; charset=utf-8", headers=STREAM_HEADERS)


@router.get("/generations", response_model=GenerationsSnapshotResponse)
async def generations_snapshot(svc: GenerationService = Depends(get_generation_service)):
    snap = await svc.snapshot()
    return GenerationsSnapshotResponse(
        ts=snap.ts,
        totals=snap.totals,
        active=snap.active,
        capacity_left=snap.capacity_left,
        max_active_jobs=snap.max_active_jobs,
    )


@router.get("/generations/{generation_id}", response_model=GenerationStatusResponse)
async def generation_status(generation_id: str, svc: GenerationService = Depends(get_generation_service)):
    job = await svc.get(generation_id)
    return GenerationStatusResponse.from_job(job)


@router.post("/generations/{generation_id}/cancel", response_model=GenerationStatusResponse)
async def cancel_generation(generation_id: str, svc: GenerationService = Depends(get_generation_service)):
    job = await svc.cancel(generation_id)
    return GenerationStatusResponse.from_job(job)


@router.post("/consistency-check", response_model=ConsistencyCheckResponse)
async def consistency_check(
    req: ConsistencyCheckRequest,
    svc: GenerationService = Depends(get_generation_service),
):
    return ConsistencyCheckResponse(**svc.consistency_check(req.content, req.context))
