from __future__ import annotations

import errno


class FileRootError(Exception):
    """Base error for path resolution and file operations.

    ``message`` is safe to show to clients: it names the relative path the
    client sent and never the canonical absolute path on the server.
    """

    status_code = 500
    default_message = 'File operation failed'

    def __init__(self, relative_path: str = '', message: str | None = None):
        self.relative_path = relative_path
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.relative_path:
            return f'{self.message}: {self.relative_path}'
        return self.message


class InvalidPath(FileRootError):
    status_code = 400
    default_message = 'Invalid path'


class AccessDenied(FileRootError):
    status_code = 403
    default_message = 'Access denied'


class NotFound(FileRootError):
    status_code = 404
    default_message = 'Path not found'


class NotADirectory(FileRootError):
    status_code = 400
    default_message = 'Path is not a directory'


class IsADirectory(FileRootError):
    status_code = 400
    default_message = 'Path points to a directory, not a file'


class AlreadyExists(FileRootError):
    status_code = 409
    default_message = 'Path already exists'


class StorageIOError(FileRootError):
    status_code = 500
    default_message = 'I/O error'


class OperationTimeout(FileRootError):
    status_code = 500
    default_message = 'Operation timed out'


_ERRNO_MAP: dict[int, type[FileRootError]] = {
    errno.ENOENT: NotFound,
    errno.ENOTDIR: NotADirectory,
    errno.EISDIR: IsADirectory,
    errno.EEXIST: AlreadyExists,
    errno.ELOOP: AccessDenied,
}


def from_os_error(exc: OSError, relative_path: str) -> FileRootError:
    """Translate an ``OSError`` into the taxonomy without leaking its filename."""
    kind = _ERRNO_MAP.get(exc.errno or 0)
    if kind is not None:
        return kind(relative_path)
    return StorageIOError(relative_path, exc.strerror or StorageIOError.default_message)
