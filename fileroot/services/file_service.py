from __future__ import annotations

import logging
import os
from pathlib import PurePosixPath
from typing import BinaryIO

from .coordinator import OperationCoordinator
from .errors import InvalidPath
from .file_store import FileEntry, FileStore
from .path_resolver import PathResolver, ResolvedPath

logger = logging.getLogger(__name__)


def upload_name(filename: str | None) -> str:
    if not filename or '\x00' in filename:
        raise InvalidPath(filename or '', 'Invalid upload file name')
    name = PurePosixPath(filename.replace('\\', '/')).name
    if name in ('', '.', '..'):
        raise InvalidPath(filename, 'Invalid upload file name')
    return name


class FileService:
    """Root-confined file operations as the HTTP layer sees them.

    Every mutating call resolves once to pick the lock, then resolves again
    inside the locked worker right before touching the disk.
    """

    def __init__(
        self,
        root: str | os.PathLike,
        timeout: float | None = None,
        idempotent_delete: bool = False,
        chunk_size: int | None = None,
    ):
        self.resolver = PathResolver(root)
        self.store = FileStore(self.resolver.root, chunk_size=chunk_size)
        self.coordinator = OperationCoordinator(timeout=timeout)
        self.idempotent_delete = idempotent_delete

    @property
    def root(self):
        return self.resolver.root

    def resolve(self, relative: str | None) -> ResolvedPath:
        return self.resolver.resolve(relative)

    async def list(self, relative: str | None = '') -> list[FileEntry]:
        target = self.resolve(relative)
        return await self.coordinator.run(self._list, relative, relative=target.relative)

    async def read(self, relative: str) -> str:
        target = self.resolve(relative)
        return await self.coordinator.run(self._read, relative, relative=target.relative)

    async def write(self, relative: str, content: bytes) -> ResolvedPath:
        target = self.resolve(relative)
        result = await self.coordinator.with_lock(target, self._write, relative, content)
        logger.info('Wrote %d bytes to %r', len(content), result.relative)
        return result

    async def delete(self, relative: str, missing_ok: bool | None = None) -> None:
        if missing_ok is None:
            missing_ok = self.idempotent_delete
        target = self.resolver.resolve_entry(relative)
        await self.coordinator.with_lock(target, self._delete, relative, missing_ok)
        logger.info('Deleted %r', target.relative)

    async def upload(
        self,
        directory: str | None,
        filename: str | None,
        stream: BinaryIO,
        overwrite: bool = True,
    ) -> ResolvedPath:
        name = upload_name(filename)
        relative = str(PurePosixPath(directory or '') / name)
        target = self.resolver.resolve_entry(relative)
        result = await self.coordinator.with_lock(target, self._upload, relative, stream, overwrite)
        logger.info('Uploaded %r', result.relative)
        return result

    def close(self) -> None:
        self.coordinator.close()

    def _list(self, relative: str | None) -> list[FileEntry]:
        return self.store.list_dir(self.resolve(relative))

    def _read(self, relative: str) -> str:
        return self.store.read_content(self.resolve(relative))

    def _write(self, relative: str, content: bytes) -> ResolvedPath:
        target = self.resolve(relative)
        self.store.write(target, content)
        return target

    def _delete(self, relative: str, missing_ok: bool) -> None:
        self.store.delete(self.resolver.resolve_entry(relative), missing_ok=missing_ok)

    def _upload(self, relative: str, stream: BinaryIO, overwrite: bool) -> ResolvedPath:
        staged = self.store.stage(self.resolver.resolve_entry(relative), stream)
        try:
            # staging created directories; check the destination again
            target = self.resolver.resolve_entry(relative)
            self.store.move_into(staged, target, overwrite=overwrite)
        finally:
            self.store.discard(staged)
        return target
