import dataclasses
import enum
import typing

from fusepatch import errors
from fusepatch.models import patch_id as patch_id_models

crc_max = 0xFFFFFFFF


class RecordAction(enum.Enum):
    ADD = "ADD"
    UPD = "UPD"
    DEL = "DEL"
    INFO = "INFO"


def validate_path(path: str) -> None:
    """
    Raises `MalformedRecord` unless `path` is a relative, forward slash delimited path that
    can be written on a single metadata line.
    """
    if path == "" or path != path.strip():
        raise errors.MalformedRecord(f"Invalid path: {path!r}")
    if path.startswith("/"):
        raise errors.MalformedRecord(f"Absolute path not allowed: {path}")
    if path.startswith("#"):
        raise errors.MalformedRecord(f"Path cannot start with '#': {path}")
    for c in ("\\", "|", "\n", "\r"):
        if c in path:
            raise errors.MalformedRecord(f"Invalid character {c!r} in path: {path!r}")

    segments = path.split("/")
    if "" in segments or "." in segments:
        raise errors.MalformedRecord(f"Non canonical path: {path}")
    if ".." in segments:
        raise errors.MalformedRecord(f"Parent segment in path: {path}")


@dataclasses.dataclass(frozen=True)
class Record:
    """
    A single file level change within a patch.
    """

    patch_id: patch_id_models.PatchId | None
    action: RecordAction
    path: str
    crc: int

    def __post_init__(self) -> None:
        validate_path(self.path)
        if isinstance(self.crc, bool) or not isinstance(self.crc, int):
            raise errors.MalformedRecord(f"Invalid CRC for {self.path}: {self.crc!r}")
        if self.crc < 0 or self.crc > crc_max:
            raise errors.MalformedRecord(f"CRC out of range for {self.path}: {self.crc}")
        if self.action == RecordAction.DEL and self.crc != 0:
            raise errors.MalformedRecord(f"DEL record for {self.path} must have a CRC of 0")

    @classmethod
    def create(
        cls,
        patch_id: patch_id_models.PatchId | None,
        action: RecordAction,
        path: str,
        crc: int,
    ) -> typing.Self:
        # Removed files carry no content
        if action == RecordAction.DEL:
            crc = 0
        return cls(patch_id, action, path, crc)

    @classmethod
    def from_string(
        cls, line: str, patch_id: patch_id_models.PatchId | None = None
    ) -> typing.Self:
        """
        Parses `<path>|<action>|<crc>`.
        """
        tokens = line.strip().split("|")
        if len(tokens) != 3:
            raise errors.MalformedRecord(f"Invalid record: {line!r}")

        path, action_str, crc_str = (token.strip() for token in tokens)
        try:
            action = RecordAction(action_str)
        except ValueError:
            raise errors.MalformedRecord(
                f"Unknown action {action_str!r} in record: {line!r}"
            ) from None

        if not crc_str.isascii() or not crc_str.isdigit():
            raise errors.MalformedRecord(f"Invalid CRC {crc_str!r} in record: {line!r}")

        return cls(patch_id, action, path, int(crc_str))

    def __str__(self) -> str:
        return f"{self.path}|{self.action.value}|{self.crc}"
