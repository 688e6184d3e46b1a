from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from backupgui.api.schemas.jobs import (
    JobListResponse,
    JobResponse,
    JobStartedResponse,
    RestoreRequest,
    RunBackupRequest,
)
from backupgui.core.path_safety import PathSafetyError
from backupgui.jobs.launcher import LaunchFailureError, LaunchRequestError, ProcessLauncher
from backupgui.jobs.registry import JobNotFoundError, JobRegistry
from backupgui.jobs.service import JobService, snapshot_to_dict
from backupgui.jobs.streaming import encode_sse, stream_job_events

router = APIRouter(prefix="/jobs", tags=["jobs"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def get_job_registry(request: Request) -> JobRegistry:
    return request.app.state.job_registry


def get_job_service(request: Request) -> JobService:
    settings = request.app.state.settings
    return JobService(
        settings=settings,
        registry=get_job_registry(request),
        launcher=ProcessLauncher(settings),
    )


@router.post("/backup", response_model=JobStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_backup(request: RunBackupRequest, service: JobService = Depends(get_job_service)) -> JobStartedResponse:
    try:
        job_id = await service.start_backup(dry_run=request.dry_run, keep=request.keep, extra_env=request.extra_env)
    except LaunchRequestError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except LaunchFailureError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return JobStartedResponse(job_id=job_id)


@router.post("/restore", response_model=JobStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_restore(request: RestoreRequest, service: JobService = Depends(get_job_service)) -> JobStartedResponse:
    try:
        job_id = await service.start_restore(
            request.backup_name,
            db_only=request.db_only,
            files_only=request.files_only,
            dry_run=request.dry_run,
        )
    except PathSafetyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LaunchRequestError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except LaunchFailureError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return JobStartedResponse(job_id=job_id)


@router.get("", response_model=JobListResponse)
async def list_jobs(service: JobService = Depends(get_job_service)) -> JobListResponse:
    return JobListResponse(jobs=[JobResponse.model_validate(snapshot_to_dict(item)) for item in service.list_jobs()])


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, service: JobService = Depends(get_job_service)) -> JobResponse:
    try:
        job = service.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobResponse.model_validate(snapshot_to_dict(job))


@router.get("/{job_id}/stream")
async def stream_job(job_id: str, registry: JobRegistry = Depends(get_job_registry)) -> StreamingResponse:
    async def event_source() -> AsyncIterator[str]:
        async for event in stream_job_events(registry, job_id):
            yield encode_sse(event)

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=_SSE_HEADERS)
