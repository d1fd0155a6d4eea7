# docmind/api/v1/files.py
from typing import List

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile

from docmind.core.dependencies import get_current_user_id, get_file_service, rate_limit
from docmind.schemas.file import AnalysisOut, FileDetailOut, FileOut, FileUploadResponse, ReanalyzeResponse
from docmind.services.file_service import FileService

router = APIRouter()


def _wake_worker(request: Request) -> None:
    worker = getattr(request.app.state, "worker", None)
    if worker is not None:
        worker.notify()


@router.post("/upload", response_model=FileUploadResponse)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    _=Depends(rate_limit("upload")),
    svc: FileService = Depends(get_file_service),
):
    data = await file.read()
    record = await svc.upload(user_id, file.filename or "", file.content_type or "", data)
    _wake_worker(request)
    return {
        "file_id": record.id,
        "status": record.status,
        "message": "File uploaded successfully, processing queued",
    }


@router.get("", response_model=List[FileOut])
async def list_files(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    _=Depends(rate_limit("api")),
    svc: FileService = Depends(get_file_service),
):
    return await svc.list_files(user_id, skip=skip, limit=limit)


@router.get("/{file_id}", response_model=FileDetailOut)
async def get_file(
    file_id: str,
    user_id: str = Depends(get_current_user_id),
    _=Depends(rate_limit("api")),
    svc: FileService = Depends(get_file_service),
):
    """Status, last error and the analysis once one exists."""
    file, analysis = await svc.get_detail(file_id, user_id)
    return FileDetailOut(
        **FileOut.model_validate(file).model_dump(),
        file_metadata=file.file_metadata or {},
        analysis=AnalysisOut.model_validate(analysis) if analysis is not None else None,
    )


@router.post("/{file_id}/reanalyze", response_model=ReanalyzeResponse)
async def reanalyze_file(
    file_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    _=Depends(rate_limit("api")),
    svc: FileService = Depends(get_file_service),
):
    queued = await svc.reanalyze(file_id, user_id)
    _wake_worker(request)
    return {
        "file_id": file_id,
        "queued": queued,
        "message": "Re-analysis queued" if queued else "Re-analysis already queued",
    }


@router.delete("/{file_id}", status_code=204)
async def delete_file(
    file_id: str,
    user_id: str = Depends(get_current_user_id),
    _=Depends(rate_limit("api")),
    svc: FileService = Depends(get_file_service),
):
    await svc.delete(file_id, user_id)
