import collections.abc
import contextlib
import os
import pathlib
import shutil
import tempfile
import typing

from fusepatch import errors


def ensure_path(path: pathlib.Path):
    """
    Ensure the given directory exists.
    """
    if not path.exists():
        path.mkdir(parents=True)
    elif not path.is_dir():
        raise errors.RepositoryCorrupt(f"Unexpected: {path} is not a directory")


def remove_path(path: pathlib.Path) -> bool:
    """
    Removes the given directory and everything below it.
    Returns whether anything was removed.
    """
    if not path.exists():
        return False

    shutil.rmtree(path)
    return True


@contextlib.contextmanager
def atomic_write(
    target: pathlib.Path, mode: typing.Literal["w", "wb", "w+b"] = "w"
) -> collections.abc.Generator[typing.IO[typing.Any]]:
    """
    Yields a temporary file next to `target` that replaces `target` once the block exits
    normally. The temporary file is removed when the block raises.
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    tmp_path = pathlib.Path(tmp_name)
    try:
        if mode == "w":
            f = os.fdopen(fd, "w", encoding="utf-8", newline="\n")
        else:
            f = os.fdopen(fd, mode)
        with f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
