import collections.abc
import contextlib
import shutil
import tempfile
import typing
import zipfile
import zlib

from fusepatch import errors
from fusepatch.models import metadata as metadata_models
from fusepatch.models import patch_id as patch_id_models
from fusepatch.models import record as record_models

_chunk_size = 64 * 1024


@contextlib.contextmanager
def _seekable(stream: typing.BinaryIO) -> collections.abc.Generator[typing.BinaryIO]:
    """
    zipfile needs to seek to the central directory. Streams that cannot seek are copied
    once into a temporary file.
    """
    if stream.seekable():
        yield stream
        return

    with tempfile.SpooledTemporaryFile(max_size=16 * 1024 * 1024) as spooled:
        shutil.copyfileobj(stream, spooled, _chunk_size)
        spooled.seek(0)
        yield typing.cast("typing.BinaryIO", spooled)


def _is_skipped(info: zipfile.ZipInfo) -> bool:
    # Directories and zero-length marker entries carry no content
    return info.is_dir() or info.file_size == 0


def _drain(archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> None:
    # Reading the entry to its end makes zipfile check the CRC of the content
    with archive.open(info) as entry:
        while entry.read(_chunk_size):
            pass


def read_records(
    patch_id: patch_id_models.PatchId,
    action: record_models.RecordAction,
    stream: typing.BinaryIO,
) -> list[record_models.Record]:
    """
    Derives one record per file entry of the zip in `stream`, using the CRC stored in the
    zip's central directory. The stream is read but not closed.
    """
    records: dict[str, record_models.Record] = {}
    try:
        with _seekable(stream) as seekable, zipfile.ZipFile(seekable, "r") as archive:
            for info in archive.infolist():
                if _is_skipped(info):
                    continue

                try:
                    record = record_models.Record.create(patch_id, action, info.filename, info.CRC)
                except errors.MalformedRecord as e:
                    raise errors.MalformedArchive(
                        f"Invalid entry in archive of {patch_id}: {e.message}"
                    ) from e
                if record.path in records:
                    raise errors.MalformedArchive(
                        f"Duplicate entry {record.path} in archive of {patch_id}"
                    )

                try:
                    _drain(archive, info)
                except (zlib.error, EOFError, RuntimeError) as e:
                    # RuntimeError covers encrypted entries and unsupported compression
                    raise errors.MalformedArchive(
                        f"Cannot read {info.filename} in archive of {patch_id}: {e}"
                    ) from e
                records[record.path] = record
    except zipfile.BadZipFile as e:
        raise errors.MalformedArchive(f"Invalid archive for {patch_id}: {e}") from e
    except OSError as e:
        raise errors.IOFailure(f"Cannot read archive for {patch_id}: {e}") from e

    return list(records.values())


def build_patch(
    metadata: metadata_models.PatchMetadata,
    action: record_models.RecordAction,
    stream: typing.BinaryIO,
) -> metadata_models.Patch:
    """
    Builds a patch from the given metadata and the content of a zip archive.
    """
    records = read_records(metadata.patch_id, action, stream)
    return metadata_models.Patch.create(metadata, records)


def build_patch_from_zip(
    patch_id: patch_id_models.PatchId,
    action: record_models.RecordAction,
    stream: typing.BinaryIO,
) -> metadata_models.Patch:
    """
    Builds a patch with no roles, dependencies or commands from a zip archive.
    """
    metadata = metadata_models.PatchMetadata(patch_id=patch_id)
    return build_patch(metadata, action, stream)
