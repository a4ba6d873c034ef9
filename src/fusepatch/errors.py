import pathlib
import typing


class FusePatchError(RuntimeError):
    """
    Base class of every error raised by fusepatch.

    `source` and `line` point at the offending input when it is known.
    """

    def __init__(
        self,
        message: str,
        *,
        source: str | pathlib.Path | None = None,
        line: int | None = None,
    ) -> None:
        self.message = message
        self.source = source
        self.line = line
        super().__init__(self._format())

    def _format(self) -> str:
        if self.source is None and self.line is None:
            return self.message
        location = "<stream>" if self.source is None else str(self.source)
        if self.line is not None:
            location = f"{location}:{self.line}"
        return f"{location}: {self.message}"

    def at(self, source: str | pathlib.Path | None, line: int | None) -> typing.Self:
        """
        Returns a copy of this error located at the given source and line.
        """
        return type(self)(self.message, source=source, line=line)


class MalformedId(FusePatchError):
    pass


class MalformedRecord(FusePatchError):
    pass


class MalformedProperty(FusePatchError):
    pass


class HeaderMissing(FusePatchError):
    pass


class MalformedArchive(FusePatchError):
    pass


class RepositoryCorrupt(FusePatchError):
    pass


class DuplicatePatch(FusePatchError):
    pass


class RepositoryBusy(FusePatchError):
    pass


class IOFailure(FusePatchError):
    pass
