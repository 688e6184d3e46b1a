from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from backupgui.api.schemas.backups import (
    BackupEntryResponse,
    BackupListResponse,
    DeleteBackupRequest,
    DeleteBackupResponse,
)
from backupgui.artifacts.service import ArtifactNotFoundError, ArtifactStore
from backupgui.artifacts.types import ArtifactKind
from backupgui.core.path_safety import PathSafetyError

router = APIRouter(prefix="/backups", tags=["backups"])


def get_artifact_store(request: Request) -> ArtifactStore:
    return request.app.state.artifact_store


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _delete(store: ArtifactStore, name: str) -> DeleteBackupResponse:
    try:
        store.delete(name)
    except PathSafetyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ArtifactNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return DeleteBackupResponse(success=True)


@router.get("", response_model=BackupListResponse)
def list_backups(store: ArtifactStore = Depends(get_artifact_store)) -> BackupListResponse:
    entries = store.list_entries()
    return BackupListResponse(
        backups=[
            BackupEntryResponse(
                name=entry.name,
                kind=entry.kind.value,
                size=entry.size,
                size_formatted=entry.size_formatted,
                date=entry.date,
            )
            for entry in entries
        ]
    )


@router.get("/{name}/download")
def download_backup(name: str, store: ArtifactStore = Depends(get_artifact_store)) -> StreamingResponse:
    try:
        download, content = store.fetch(name)
    except PathSafetyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ArtifactNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    headers = {"Content-Disposition": _content_disposition(download.filename)}
    if download.kind == ArtifactKind.FILE:
        headers["Content-Length"] = str(download.path.stat().st_size)
    return StreamingResponse(content, media_type=download.media_type, headers=headers)


@router.post("/delete", response_model=DeleteBackupResponse)
def delete_backup(request: DeleteBackupRequest, store: ArtifactStore = Depends(get_artifact_store)) -> DeleteBackupResponse:
    return _delete(store, request.backup_name)


@router.delete("/{name}", response_model=DeleteBackupResponse)
def delete_backup_by_name(name: str, store: ArtifactStore = Depends(get_artifact_store)) -> DeleteBackupResponse:
    return _delete(store, name)
