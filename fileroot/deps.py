from __future__ import annotations

from fastapi import HTTPException, Request, status

from .services.file_service import FileService


def get_file_service(request: Request) -> FileService:
    service = getattr(request.app.state, 'files', None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail='File service not ready')
    return service


def require_path(path: str | None, label: str = 'File path') -> str:
    if not path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f'{label} is required')
    return path
