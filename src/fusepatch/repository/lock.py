import collections.abc
import contextlib
import os
import pathlib
import threading
import typing

from fusepatch import errors


class Lock(typing.Protocol):
    """
    Advisory lock guarding a repository. `try_lock` never blocks.
    """

    def try_lock(self) -> bool: ...

    def unlock(self) -> None: ...


class ThreadLock:
    """
    Serializes repository access between threads of one process.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def try_lock(self) -> bool:
        return self._lock.acquire(blocking=False)

    def unlock(self) -> None:
        self._lock.release()


class LockFile:
    """
    Serializes repository access between processes through a lock file that exists while
    the lock is held.
    """

    def __init__(self, path: pathlib.Path):
        self.path = path
        self._fd: int | None = None
        self._guard = threading.Lock()

    def try_lock(self) -> bool:
        with self._guard:
            if self._fd is not None:
                return False
            try:
                self._fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            except FileExistsError:
                return False
            except OSError as e:
                raise errors.IOFailure(f"Cannot create lock file {self.path}: {e}") from e
            try:
                os.write(self._fd, str(os.getpid()).encode())
            except OSError as e:
                os.close(self._fd)
                self._fd = None
                self.path.unlink(missing_ok=True)
                raise errors.IOFailure(f"Cannot write lock file {self.path}: {e}") from e
            return True

    def unlock(self) -> None:
        with self._guard:
            if self._fd is None:
                raise RuntimeError(f"Lock {self.path} is not held")
            try:
                os.close(self._fd)
            finally:
                self._fd = None
                self.path.unlink(missing_ok=True)


@contextlib.contextmanager
def locked(lock: Lock, what: str) -> collections.abc.Generator[None]:
    """
    Holds `lock` for the duration of the block, raising `RepositoryBusy` when it is taken.
    """
    if not lock.try_lock():
        raise errors.RepositoryBusy(f"Repository is busy, cannot {what}")
    try:
        yield
    finally:
        lock.unlock()
