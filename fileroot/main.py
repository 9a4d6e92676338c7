from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .routers import files
from .services.errors import FileRootError
from .services.file_service import FileService

logger = logging.getLogger(__name__)

_SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
}


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s %(levelname)-8s %(name)s: %(message)s',
    )


def _open_file_service() -> FileService:
    root = Path(settings.files_dir)
    if not root.is_dir():
        raise RuntimeError(f'FILES_DIR must be an existing directory: {settings.files_dir}')
    return FileService(
        root,
        timeout=settings.operation_timeout_sec,
        idempotent_delete=settings.idempotent_delete,
        chunk_size=settings.upload_chunk_size,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_logging()
    service = _open_file_service()
    app.state.files = service
    logger.info('Serving files from %s', service.root)
    try:
        yield
    finally:
        service.close()
        app.state.files = None


app = FastAPI(title=settings.app_name, lifespan=lifespan)


def _parse_cors_origins(value: str) -> list[str]:
    return [origin.strip() for origin in value.split(',') if origin.strip()]


cors_origins = _parse_cors_origins(settings.cors_origins)
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials='*' not in cors_origins,
        allow_methods=['GET', 'POST', 'DELETE', 'OPTIONS'],
        allow_headers=['Authorization', 'Content-Type'],
    )


@app.middleware('http')
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for key, value in _SECURITY_HEADERS.items():
        response.headers[key] = value
    return response


@app.exception_handler(FileRootError)
async def file_error_handler(request: Request, exc: FileRootError):
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc)
    else:
        logger.info('%s %s rejected: %s', request.method, request.url.path, exc)
    return JSONResponse({'detail': exc.message}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception('Unhandled error on %s %s', request.method, request.url.path, exc_info=exc)
    return JSONResponse({'detail': 'Internal server error. Please try again.'}, status_code=500)


@app.get('/healthz')
def healthz():
    return {'ok': True}


app.include_router(files.router)


def run() -> None:
    uvicorn.run(app, host=settings.app_host, port=settings.app_port, log_level=settings.log_level.lower())
