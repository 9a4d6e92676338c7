from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .errors import AccessDenied, InvalidPath, NotADirectory, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedPath:
    """A canonical path proven to be the root or one of its descendants.

    Only valid at the moment it was produced; callers re-resolve before acting
    if the filesystem may have changed in between.
    """

    root: Path
    path: Path
    relative: str

    @property
    def key(self) -> str:
        return str(self.path)

    @property
    def is_root(self) -> bool:
        return self.path == self.root

    @property
    def name(self) -> str:
        return self.path.name

    def __fspath__(self) -> str:
        return str(self.path)


def _canonical(path: Path) -> Path:
    # realpath follows every existing symlink, dangling ones included, and
    # collapses the remainder lexically.
    return Path(os.path.realpath(path))


class PathResolver:
    def __init__(self, root: str | os.PathLike):
        candidate = Path(root)
        if not candidate.exists():
            raise NotFound(str(root), 'Root directory does not exist')
        if not candidate.is_dir():
            raise NotADirectory(str(root), 'Root is not a directory')
        self.root = _canonical(candidate.absolute())

    def contains(self, path: Path) -> bool:
        return path == self.root or self.root in path.parents

    def resolve(self, relative: str | None) -> ResolvedPath:
        relative = self._validate(relative)
        joined = self.root / relative.lstrip('/')
        candidate = _canonical(joined)
        if not self.contains(candidate):
            logger.warning('Path escapes root: %r', relative)
            raise AccessDenied(relative)

        anchor = self._deepest_existing(candidate)
        if anchor is None:
            raise NotFound(relative)
        canonical_anchor = _canonical(anchor)
        if not self.contains(canonical_anchor):
            logger.warning('Existing ancestor escapes root: %r', relative)
            raise AccessDenied(relative)

        resolved = canonical_anchor.joinpath(*candidate.parts[len(anchor.parts):])
        rel = resolved.relative_to(self.root).as_posix()
        return ResolvedPath(root=self.root, path=resolved, relative='' if rel == '.' else rel)

    def resolve_entry(self, relative: str | None) -> ResolvedPath:
        """Resolve the parent directory and keep the last component as a name.

        A symlink in the final position is not followed, so the result
        addresses the link itself. Used where the operation replaces or
        removes the directory entry rather than the file behind it.
        """
        relative = self._validate(relative)
        parent, _, name = relative.strip('/').rpartition('/')
        if name in ('', '.', '..'):
            return self.resolve(relative)

        base = self.resolve(parent)
        path = base.path / name
        return ResolvedPath(root=self.root, path=path, relative=path.relative_to(self.root).as_posix())

    def _validate(self, relative: str | None) -> str:
        if relative is None:
            return ''
        if not isinstance(relative, str):
            raise InvalidPath(repr(relative))
        if '\x00' in relative:
            raise InvalidPath(relative.replace('\x00', '\\0'), 'Path contains a null byte')
        return relative

    def _deepest_existing(self, path: Path) -> Path | None:
        for candidate in (path, *path.parents):
            if os.path.lexists(candidate):
                return candidate
            if candidate == self.root:
                return None
        return None
