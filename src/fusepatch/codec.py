"""
Reads and writes the textual patch metadata format:

    # fusepatch: 2.0.0
    # patch id: foo-1.1

    [properties]
    Oneoff: foo-1.0
    Roles: admin, deployer
    Dependencies: bar-2.1, baz-1.0

    [content]
    lib/foo.jar|ADD|3735928559

    [post-install-commands]
    bin/reload.sh --all
"""

import io
import pathlib
import re
import typing

import pydantic

from fusepatch import constants, errors
from fusepatch.models import metadata as metadata_models
from fusepatch.models import patch_id as patch_id_models
from fusepatch.models import record as record_models

version_prefix = "# fusepatch:"
patch_id_prefix = "# patch id:"

properties_section = "[properties]"
content_section = "[content]"
post_install_commands_section = "[post-install-commands]"

oneoff_key = "Oneoff"
roles_key = "Roles"
dependencies_key = "Dependencies"

_version_header = re.compile(r"#\s*fusepatch\s*:\s*(\S+)")
_patch_id_header = re.compile(r"#\s*patch\s+id\s*:\s*(\S+)")


def write_patch(patch: metadata_models.Patch, stream: typing.TextIO, add_header: bool = True):
    """
    Writes the metadata of `patch` to a text stream. Empty sections are left out.
    """
    metadata = patch.metadata

    try:
        if add_header:
            stream.write(f"{version_prefix} {constants.fusepatch_version}\n")
            stream.write(f"{patch_id_prefix} {patch.patch_id}\n")

        properties: list[str] = []
        if metadata.oneoff_id is not None:
            properties.append(f"{oneoff_key}: {metadata.oneoff_id}")
        if metadata.roles:
            properties.append(f"{roles_key}: {', '.join(metadata.roles)}")
        if metadata.dependencies:
            deps = ", ".join(str(dep) for dep in metadata.dependencies)
            properties.append(f"{dependencies_key}: {deps}")

        _write_section(stream, properties_section, properties)
        _write_section(stream, content_section, [str(record) for record in patch.records])
        _write_section(stream, post_install_commands_section, list(metadata.post_commands))
    except OSError as e:
        raise errors.IOFailure(f"Cannot write metadata of {patch.patch_id}: {e}") from e


def _write_section(stream: typing.TextIO, section: str, lines: list[str]):
    if not lines:
        return

    stream.write("\n")
    stream.write(f"{section}\n")
    for line in lines:
        stream.write(f"{line}\n")


def dumps(patch: metadata_models.Patch) -> str:
    buffer = io.StringIO(newline="\n")
    write_patch(patch, buffer)
    return buffer.getvalue()


class _PatchBuilder:
    """
    Collects what the parser has seen so far. Nothing is built before the whole input has
    been read, so a failed parse never leaves a partial patch behind.
    """

    def __init__(self, patch_id: patch_id_models.PatchId):
        self.patch_id = patch_id
        self.oneoff_id: patch_id_models.PatchId | None = None
        self.roles: list[str] = []
        self.dependencies: list[patch_id_models.PatchId] = []
        self.post_commands: list[str] = []
        self.records: dict[str, record_models.Record] = {}

    def add_property(self, line: str):
        key, sep, value = line.partition(":")
        if sep == "":
            raise errors.MalformedProperty(f"Illegal property spec: {line}")
        key = key.strip()
        values = [token.strip() for token in value.split(",") if token.strip() != ""]

        # Unknown keys are left for newer versions of the format
        if key == oneoff_key:
            if len(values) != 1:
                raise errors.MalformedProperty(f"Expected a single one-off id: {line}")
            self.oneoff_id = patch_id_models.PatchId.from_string(values[0])
        elif key == roles_key:
            self.roles.extend(values)
        elif key == dependencies_key:
            self.dependencies.extend(patch_id_models.PatchId.from_string(value) for value in values)

    def add_record(self, line: str):
        record = record_models.Record.from_string(line, self.patch_id)
        if record.path in self.records:
            raise errors.MalformedRecord(f"Duplicate record path: {record.path}")
        self.records[record.path] = record

    def build(self) -> metadata_models.Patch:
        try:
            metadata = metadata_models.PatchMetadata(
                patch_id=self.patch_id,
                oneoff_id=self.oneoff_id,
                dependencies=tuple(self.dependencies),
                roles=tuple(self.roles),
                post_commands=tuple(self.post_commands),
            )
        except pydantic.ValidationError as e:
            raise errors.MalformedProperty(f"Invalid metadata for {self.patch_id}: {e}") from e

        return metadata_models.Patch.create(metadata, self.records.values())


def _read_header(lines: typing.Iterator[tuple[int, str]]) -> patch_id_models.PatchId:
    header: list[tuple[int, str]] = []
    for lineno, line in lines:
        if line.strip() == "":
            continue
        header.append((lineno, line.strip()))
        if len(header) == 2:
            break

    if len(header) < 1:
        raise errors.HeaderMissing("Cannot obtain version info")
    if not _version_header.fullmatch(header[0][1]):
        raise errors.HeaderMissing("Cannot obtain version info", line=header[0][0])
    if len(header) < 2:
        raise errors.HeaderMissing("Cannot obtain patch id")

    lineno, line = header[1]
    found = _patch_id_header.fullmatch(line)
    if found is None:
        raise errors.HeaderMissing("Cannot obtain patch id", line=lineno)

    try:
        return patch_id_models.PatchId.from_string(found.group(1))
    except errors.MalformedId as e:
        raise e.at(None, lineno) from None


def _numbered_lines(stream: typing.TextIO) -> typing.Iterator[tuple[int, str]]:
    try:
        for lineno, line in enumerate(stream, start=1):
            yield lineno, line
    except (OSError, UnicodeDecodeError) as e:
        raise errors.IOFailure(f"Cannot read metadata: {e}") from e


def read_patch(
    stream: typing.TextIO, source: str | pathlib.Path | None = None
) -> metadata_models.Patch:
    """
    Parses patch metadata from a text stream. Errors carry `source` and the line number
    they were found at.
    """
    lines = _numbered_lines(stream)

    try:
        builder = _PatchBuilder(_read_header(lines))
    except errors.FusePatchError as e:
        if isinstance(e, errors.IOFailure) or e.source is not None:
            raise
        raise e.at(source, e.line) from None

    section: str | None = None
    lineno = 0
    try:
        for lineno, raw_line in lines:
            line = raw_line.strip()
            if line == "" or line.startswith("#"):
                continue
            if line.startswith("[") and line.endswith("]"):
                section = line
                continue

            # Lines outside of known sections are skipped
            if section == properties_section:
                builder.add_property(line)
            elif section == content_section:
                builder.add_record(line)
            elif section == post_install_commands_section:
                builder.post_commands.append(line)
    except errors.IOFailure:
        raise
    except errors.FusePatchError as e:
        raise e.at(source, lineno) from None

    try:
        return builder.build()
    except errors.FusePatchError as e:
        raise e.at(source, None) from None


def loads(text: str, source: str | pathlib.Path | None = None) -> metadata_models.Patch:
    return read_patch(io.StringIO(text), source)


def read_patch_file(path: pathlib.Path) -> metadata_models.Patch:
    """
    Reads the metadata file at `path`.
    """
    try:
        with path.open("r", encoding="utf-8", newline=None) as f:
            return read_patch(f, path)
    except OSError as e:
        raise errors.IOFailure(f"Cannot read {path}: {e}") from e

