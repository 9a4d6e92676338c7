from __future__ import annotations

import errno
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from .errors import (
    AccessDenied,
    AlreadyExists,
    FileRootError,
    IsADirectory,
    NotADirectory,
    NotFound,
    StorageIOError,
    from_os_error,
)
from .path_resolver import ResolvedPath

_DEFAULT_FILE_MODE = 0o644
_CHUNK_SIZE = 1024 * 1024
_O_NOFOLLOW = getattr(os, 'O_NOFOLLOW', 0)


@dataclass(frozen=True)
class FileEntry:
    name: str
    path: str
    is_directory: bool
    size: int
    modified: datetime


def _require_resolved(*paths) -> None:
    for path in paths:
        if not isinstance(path, ResolvedPath):
            raise TypeError(f'FileStore only accepts ResolvedPath, got {type(path).__name__}')


def _fsync_dir(path: Path) -> None:
    dir_fd = os.open(str(path), os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def _temp_sibling(target: Path, suffix: str) -> tuple[int, str]:
    return tempfile.mkstemp(prefix=f'.{target.name}.', suffix=suffix, dir=str(target.parent))


class FileStore:
    def __init__(self, root: str | os.PathLike, chunk_size: int | None = None):
        self.root = Path(os.path.realpath(root))
        self.chunk_size = chunk_size or _CHUNK_SIZE

    def list_dir(self, directory: ResolvedPath) -> list[FileEntry]:
        _require_resolved(directory)
        try:
            st = os.stat(directory.path)
        except OSError as exc:
            raise from_os_error(exc, directory.relative) from exc
        if not stat.S_ISDIR(st.st_mode):
            raise NotADirectory(directory.relative)

        items: list[FileEntry] = []
        try:
            with os.scandir(directory.path) as it:
                for child in it:
                    try:
                        items.append(self._entry(Path(child.path), self._child_stat(child)))
                    except FileNotFoundError:
                        # removed while we were listing
                        continue
        except OSError as exc:
            raise from_os_error(exc, directory.relative) from exc
        return items

    def stat(self, target: ResolvedPath) -> FileEntry:
        _require_resolved(target)
        try:
            return self._entry(target.path, os.stat(target.path))
        except OSError as exc:
            raise from_os_error(exc, target.relative) from exc

    def read_content(self, file: ResolvedPath, encoding: str | None = 'utf-8') -> str | bytes:
        _require_resolved(file)
        try:
            fd = os.open(file.path, os.O_RDONLY | _O_NOFOLLOW)
        except OSError as exc:
            raise from_os_error(exc, file.relative) from exc
        try:
            if stat.S_ISDIR(os.fstat(fd).st_mode):
                raise IsADirectory(file.relative)
            with os.fdopen(fd, 'rb') as handle:
                fd = -1
                data = handle.read()
        except OSError as exc:
            raise from_os_error(exc, file.relative) from exc
        finally:
            if fd >= 0:
                os.close(fd)

        if encoding is None:
            return data
        try:
            return data.decode(encoding)
        except UnicodeDecodeError as exc:
            raise StorageIOError(file.relative, f'File is not valid {encoding} text') from exc

    def write(self, file: ResolvedPath, content: bytes) -> None:
        _require_resolved(file)
        target = file.path
        if os.path.isdir(target):
            raise IsADirectory(file.relative)
        self._ensure_parent(file)

        mode = _DEFAULT_FILE_MODE
        try:
            existing = os.stat(target, follow_symlinks=False)
            if stat.S_ISREG(existing.st_mode):
                mode = stat.S_IMODE(existing.st_mode)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise from_os_error(exc, file.relative) from exc

        try:
            fd, tmp_path = _temp_sibling(target, '.tmp')
        except OSError as exc:
            raise from_os_error(exc, file.relative) from exc
        try:
            with os.fdopen(fd, 'wb') as handle:
                handle.write(content)
                handle.flush()
                os.fchmod(handle.fileno(), mode)
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
            _fsync_dir(target.parent)
        except BaseException as exc:
            Path(tmp_path).unlink(missing_ok=True)
            if isinstance(exc, OSError):
                raise from_os_error(exc, file.relative) from exc
            raise

    def delete(self, target: ResolvedPath, missing_ok: bool = False) -> None:
        _require_resolved(target)
        if target.is_root:
            raise AccessDenied(target.relative, 'Refusing to delete the root directory')
        try:
            st = os.stat(target.path, follow_symlinks=False)
        except FileNotFoundError as exc:
            if missing_ok:
                return
            raise NotFound(target.relative) from exc
        except OSError as exc:
            raise from_os_error(exc, target.relative) from exc

        try:
            if stat.S_ISDIR(st.st_mode):
                shutil.rmtree(target.path)
            else:
                os.unlink(target.path)
            _fsync_dir(target.path.parent)
        except FileNotFoundError as exc:
            if not missing_ok:
                raise NotFound(target.relative) from exc
        except OSError as exc:
            raise from_os_error(exc, target.relative) from exc

    def move_into(self, source: ResolvedPath, destination: ResolvedPath, overwrite: bool = False) -> None:
        _require_resolved(source, destination)
        if destination.is_root or (os.path.isdir(destination.path) and not os.path.islink(destination.path)):
            raise IsADirectory(destination.relative)
        if not os.path.lexists(source.path):
            raise NotFound(source.relative)
        self._ensure_parent(destination)

        try:
            if overwrite:
                self._replace(source.path, destination.path)
            else:
                self._link_into(source, destination)
            _fsync_dir(destination.path.parent)
        except FileRootError:
            raise
        except OSError as exc:
            raise from_os_error(exc, destination.relative) from exc

    def stage(self, destination: ResolvedPath, stream: BinaryIO) -> ResolvedPath:
        """Copy ``stream`` into a hidden sibling of ``destination``.

        The returned path is the staging file; hand it to :meth:`move_into`
        to publish it or to :meth:`discard` to drop it.
        """
        _require_resolved(destination)
        self._ensure_parent(destination)
        try:
            fd, tmp_path = _temp_sibling(destination.path, '.upload')
        except OSError as exc:
            raise from_os_error(exc, destination.relative) from exc
        try:
            with os.fdopen(fd, 'wb') as handle:
                while chunk := stream.read(self.chunk_size):
                    handle.write(chunk)
                handle.flush()
                os.fchmod(handle.fileno(), _DEFAULT_FILE_MODE)
                os.fsync(handle.fileno())
        except BaseException as exc:
            Path(tmp_path).unlink(missing_ok=True)
            if isinstance(exc, OSError):
                raise from_os_error(exc, destination.relative) from exc
            raise

        staged = Path(tmp_path)
        return ResolvedPath(
            root=destination.root,
            path=staged,
            relative=staged.relative_to(destination.root).as_posix(),
        )

    def discard(self, path: ResolvedPath) -> None:
        _require_resolved(path)
        if not path.is_root:
            path.path.unlink(missing_ok=True)

    def _ensure_parent(self, target: ResolvedPath) -> None:
        try:
            target.path.parent.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as exc:
            raise NotADirectory(target.relative, 'A parent of this path is not a directory') from exc
        except OSError as exc:
            raise from_os_error(exc, target.relative) from exc

    def _replace(self, source: Path, destination: Path) -> None:
        try:
            os.replace(source, destination)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            self._copy_replace(source, destination)
            source.unlink(missing_ok=True)

    def _link_into(self, source: ResolvedPath, destination: ResolvedPath) -> None:
        try:
            os.link(source.path, destination.path, follow_symlinks=False)
        except FileExistsError as exc:
            raise AlreadyExists(destination.relative) from exc
        except OSError as exc:
            # hard links unsupported here; the caller holds the path lock
            if exc.errno not in (errno.EPERM, errno.EXDEV, errno.ENOTSUP, errno.EMLINK):
                raise
            if os.path.lexists(destination.path):
                raise AlreadyExists(destination.relative) from exc
            self._replace(source.path, destination.path)
            return
        os.unlink(source.path)

    def _copy_replace(self, source: Path, destination: Path) -> None:
        fd, tmp_path = _temp_sibling(destination, '.tmp')
        try:
            with source.open('rb') as src, os.fdopen(fd, 'wb') as dst:
                while True:
                    chunk = src.read(self.chunk_size)
                    if not chunk:
                        break
                    dst.write(chunk)
                dst.flush()
                os.fsync(dst.fileno())
            shutil.copymode(source, tmp_path)
            os.replace(tmp_path, destination)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _child_stat(self, child: os.DirEntry) -> os.stat_result:
        if not child.is_symlink():
            return child.stat(follow_symlinks=False)
        target = Path(os.path.realpath(child.path))
        if (target == self.root or self.root in target.parents) and target.exists():
            return os.stat(target)
        return child.stat(follow_symlinks=False)

    def _entry(self, path: Path, st: os.stat_result) -> FileEntry:
        rel = path.relative_to(self.root).as_posix()
        return FileEntry(
            name=path.name,
            path='' if rel == '.' else rel,
            is_directory=stat.S_ISDIR(st.st_mode),
            size=st.st_size,
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )
