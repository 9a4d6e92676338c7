from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from ..deps import get_file_service, require_path
from ..schemas import DeleteResponse, FileContentOut, FileEntryOut, WriteFileRequest, WriteFileResponse
from ..services.file_service import FileService

router = APIRouter(prefix='/api', tags=['files'])

_SORT_KEYS = {
    'name': lambda e: e.name.lower(),
    'size': lambda e: e.size,
    'date': lambda e: e.modified,
}


@router.get('/files', response_model=list[FileEntryOut])
async def list_files(
    path: Optional[str] = Query(default=''),
    sort_by: str = Query(default='name', pattern='^(name|size|date)$'),
    order: str = Query(default='asc', pattern='^(asc|desc)$'),
    service: FileService = Depends(get_file_service),
):
    items = await service.list(path)
    items.sort(key=_SORT_KEYS[sort_by], reverse=order == 'desc')
    return [FileEntryOut.model_validate(item) for item in items]


@router.get('/files/content', response_model=FileContentOut)
async def read_file(path: Optional[str] = Query(default=None), service: FileService = Depends(get_file_service)):
    content = await service.read(require_path(path))
    return FileContentOut(content=content)


@router.post('/files', response_model=WriteFileResponse)
async def write_file(payload: WriteFileRequest, service: FileService = Depends(get_file_service)):
    file_path = require_path(payload.file_path)
    await service.write(file_path, (payload.content or '').encode('utf-8'))
    return WriteFileResponse(path=file_path)


@router.delete('/files', response_model=DeleteResponse)
async def delete_file(
    path: Optional[str] = Query(default=None),
    missing_ok: Optional[bool] = Query(default=None),
    service: FileService = Depends(get_file_service),
):
    await service.delete(require_path(path), missing_ok=missing_ok)
    return DeleteResponse()


@router.post('/upload', response_model=WriteFileResponse)
async def upload(
    file: Optional[UploadFile] = File(default=None),
    path: str = Form(default=''),
    overwrite: bool = Form(default=True),
    service: FileService = Depends(get_file_service),
):
    if file is None:
        raise HTTPException(status_code=400, detail='No file uploaded')
    try:
        target = await service.upload(path, file.filename, file.file, overwrite=overwrite)
    finally:
        await file.close()
    return WriteFileResponse(path=target.relative)
