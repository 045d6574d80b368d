"""Job management API: submit generations, poll status, cancel, remove, follow events."""

import asyncio
import base64
import binascii
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from imageforge.api.v1.deps import get_ledger
from imageforge.errors import InvalidRequest, InvalidTransition, UnknownModel
from imageforge.jobs.ledger import JobLedger
from imageforge.jobs.models import Job, JobStatus
from imageforge.models.options import (
    AspectRatio,
    GenerationRequest,
    ModelOptions,
    default_options,
)

router = APIRouter()

KEEPALIVE_SECONDS = 15.0


class JobSubmitRequest(BaseModel):
    model_id: str
    prompt: str
    aspect_ratio: AspectRatio = AspectRatio.R1_1
    image_count: int = 1
    options: Optional[ModelOptions] = None
    # Base64-encoded image files
    reference_images: List[str] = Field(default_factory=list)


def _serialize(job: Job) -> dict:
    response = job.model_dump(mode="json")
    response["settings_summary"] = job.settings_summary
    response["elapsed_seconds"] = job.elapsed_seconds
    response["remote_predictions"] = len(job.cancel_handles)
    if job.status != JobStatus.FAILED:
        response.pop("error", None)
    return response


@router.post("/jobs", status_code=202)
async def submit_job(body: JobSubmitRequest, ledger: JobLedger = Depends(get_ledger)):
    """Submit a new generation job. Poll GET /api/v1/jobs/{id} for status."""
    try:
        references = [base64.b64decode(item, validate=True) for item in body.reference_images]
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="reference_images must be base64")

    try:
        options = body.options
        if options is None:
            options = default_options(ledger.catalog.get(body.model_id).options_kind)
        request = GenerationRequest(
            model_id=body.model_id,
            prompt=body.prompt,
            aspect_ratio=body.aspect_ratio,
            image_count=body.image_count,
            options=options,
            reference_images=references,
        )
        job = await ledger.submit(request)
    except UnknownModel as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return _serialize(job)


@router.get("/jobs")
async def list_jobs(ledger: JobLedger = Depends(get_ledger)):
    jobs = ledger.list_jobs()
    return {
        "jobs": [_serialize(job) for job in jobs],
        "count": len(jobs),
        "running": ledger.running_job_count,
    }


@router.get("/jobs/events")
async def job_events(
    limit: Optional[int] = Query(None, ge=1),
    ledger: JobLedger = Depends(get_ledger),
):
    """Server-sent stream of job status changes.

    Each change arrives as `event: job` with the JSON JobEvent as data. The
    stream ends after `limit` events when given.
    """
    queue = ledger.subscribe()

    async def event_generator():
        sent = 0
        try:
            while limit is None or sent < limit:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: job\ndata: {event.model_dump_json()}\n\n"
                sent += 1
        finally:
            ledger.unsubscribe(queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, ledger: JobLedger = Depends(get_ledger)):
    job = ledger.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _serialize(job)


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, ledger: JobLedger = Depends(get_ledger)):
    try:
        job = ledger.cancel_job(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _serialize(job)


@router.delete("/jobs/{job_id}", status_code=204)
async def remove_job(job_id: str, ledger: JobLedger = Depends(get_ledger)):
    try:
        await ledger.remove_job(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
