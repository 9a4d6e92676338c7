from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from .errors import OperationTimeout, StorageIOError
from .path_resolver import ResolvedPath

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class _PathLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _retrieve(task: asyncio.Future) -> None:
    # keep asyncio from reporting exceptions nobody awaited after a timeout
    if not task.cancelled():
        task.exception()


def _offload(
    func: Callable[..., T],
    args: tuple,
    timeout: float | None,
    relative: str,
) -> tuple[asyncio.Future, Awaitable[T]]:
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    task.add_done_callback(_retrieve)

    async def _wait() -> T:
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as exc:
            logger.warning('Operation on %r exceeded %ss', relative, timeout)
            raise OperationTimeout(relative) from exc

    return task, _wait()


class LockedPath:
    """Handle for work done while a path lock is held.

    Blocking calls run in worker threads. A thread is never abandoned: if the
    caller times out or is cancelled, the lock stays held until the thread
    returns, so a half-finished rename can't race the next operation.
    """

    def __init__(self, path: ResolvedPath, timeout: float | None):
        self.path = path
        self._timeout = timeout
        self._pending: set[asyncio.Future] = set()
        self._release: Callable[[], None] | None = None
        self._closing = False

    async def call(self, func: Callable[..., T], *args) -> T:
        if self._closing:
            raise StorageIOError(self.path.relative, 'Lock already released')
        task, waiter = _offload(func, args, self._timeout, self.path.relative)
        self._pending.add(task)
        task.add_done_callback(self._settle)
        return await waiter

    def release_when_idle(self, release: Callable[[], None]) -> None:
        self._closing = True
        if self._pending:
            self._release = release
        else:
            release()

    def _settle(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if not self._pending and self._release is not None:
            release, self._release = self._release, None
            release()


class OperationCoordinator:
    """Serializes operations that target the same canonical path.

    Locks are per path only: holding a directory does not block work on its
    children. Each operation takes at most one lock.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self._locks: dict[str, _PathLock] = {}
        self._closed = False

    @property
    def active_paths(self) -> int:
        return len(self._locks)

    def close(self) -> None:
        self._closed = True

    @asynccontextmanager
    async def hold(self, path: ResolvedPath) -> AsyncIterator[LockedPath]:
        if self._closed:
            raise StorageIOError(path.relative, 'Coordinator is shut down')

        key = path.key
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _PathLock()
        entry.users += 1
        try:
            await entry.lock.acquire()
        except BaseException:
            self._forget(key, entry)
            raise

        held = LockedPath(path, self.timeout)
        try:
            yield held
        finally:
            held.release_when_idle(lambda: self._unlock(key, entry))

    async def with_lock(self, path: ResolvedPath, func: Callable[..., T], *args) -> T:
        async with self.hold(path) as held:
            return await held.call(func, *args)

    async def run(self, func: Callable[..., T], *args, relative: str = '') -> T:
        if self._closed:
            raise StorageIOError(relative, 'Coordinator is shut down')
        _, waiter = _offload(func, args, self.timeout, relative)
        return await waiter

    def _unlock(self, key: str, entry: _PathLock) -> None:
        entry.lock.release()
        self._forget(key, entry)

    def _forget(self, key: str, entry: _PathLock) -> None:
        entry.users -= 1
        if entry.users == 0 and self._locks.get(key) is entry:
            del self._locks[key]
