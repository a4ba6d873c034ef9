import dataclasses
import typing

import pydantic

from fusepatch.models import patch_id as patch_id_models
from fusepatch.models import record as record_models


def _unique_patch_ids(input: list[str] | list[patch_id_models.PatchId]) -> list[typing.Any]:
    # Order preserving set, first occurrence wins
    return list(dict.fromkeys(patch_id_models.patch_id_list_validator(list(input))))


def _unique_strings(input: list[str]) -> list[str]:
    return list(dict.fromkeys(input))


def _patch_id_validator(input: str | patch_id_models.PatchId) -> patch_id_models.PatchId:
    if isinstance(input, str):
        return patch_id_models.PatchId.from_string(input)
    return input


PatchIdField = typing.Annotated[
    patch_id_models.PatchId, pydantic.BeforeValidator(_patch_id_validator)
]
OptionalPatchIdField = typing.Annotated[
    patch_id_models.PatchId | None,
    pydantic.BeforeValidator(patch_id_models.optional_patch_id_validator),
]
PatchIdSetField = typing.Annotated[
    tuple[patch_id_models.PatchId, ...], pydantic.BeforeValidator(_unique_patch_ids)
]
StringSetField = typing.Annotated[tuple[str, ...], pydantic.BeforeValidator(_unique_strings)]


def _validate_oneoff(
    patch_id: patch_id_models.PatchId, oneoff_id: patch_id_models.PatchId | None
) -> None:
    if oneoff_id is None:
        return
    if oneoff_id.name != patch_id.name:
        raise ValueError(f"One-off {oneoff_id} does not amend a patch named {patch_id.name}")
    if not oneoff_id.version < patch_id.version:
        raise ValueError(f"One-off {oneoff_id} is not older than {patch_id}")


def _validate_dependencies(
    patch_id: patch_id_models.PatchId, dependencies: tuple[patch_id_models.PatchId, ...]
) -> None:
    if patch_id in dependencies:
        raise ValueError(f"Patch {patch_id} cannot depend on itself")


def _validate_post_commands(post_commands: tuple[str, ...]) -> None:
    for cmd in post_commands:
        if "\n" in cmd or "\r" in cmd:
            raise ValueError(f"Post install command spans multiple lines: {cmd!r}")
        if cmd == "" or cmd != cmd.strip():
            raise ValueError(f"Post install command is blank or padded: {cmd!r}")
        if cmd.startswith("#") or (cmd.startswith("[") and cmd.endswith("]")):
            raise ValueError(f"Post install command would read as a comment or section: {cmd}")


def _validate_roles(roles: tuple[str, ...]) -> None:
    for role in roles:
        if role == "" or role != role.strip():
            raise ValueError(f"Role is blank or padded: {role!r}")
        if "," in role or "\n" in role or "\r" in role:
            raise ValueError(f"Invalid character in role: {role!r}")


class PackageMetadata(pydantic.BaseModel):
    """
    What the repository stores about a patch: everything but the roles, which only matter
    to the installer.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    patch_id: PatchIdField
    oneoff_id: OptionalPatchIdField = None
    dependencies: PatchIdSetField = ()
    post_commands: tuple[str, ...] = ()

    @pydantic.model_validator(mode="after")
    def check_invariants(self) -> typing.Self:
        _validate_oneoff(self.patch_id, self.oneoff_id)
        _validate_dependencies(self.patch_id, self.dependencies)
        _validate_post_commands(self.post_commands)
        return self

    @pydantic.field_serializer("patch_id")
    def serialize_patch_id(self, patch_id: patch_id_models.PatchId) -> str:
        return str(patch_id)

    @pydantic.field_serializer("oneoff_id")
    def serialize_oneoff_id(self, oneoff_id: patch_id_models.PatchId | None) -> str | None:
        return None if oneoff_id is None else str(oneoff_id)

    @pydantic.field_serializer("dependencies")
    def serialize_dependencies(
        self, dependencies: tuple[patch_id_models.PatchId, ...]
    ) -> list[str]:
        return [str(dep) for dep in dependencies]


class PatchMetadata(pydantic.BaseModel):
    """
    Describes a patch: its id, the patch it amends (one-off), the patches it depends on,
    the roles allowed to install it and the commands to run after installation.

    Instances are validated once when built and immutable afterwards:

        PatchMetadata.model_validate({"patch_id": "foo-1.1", "dependencies": ["bar-2.0"]})
    """

    model_config = pydantic.ConfigDict(frozen=True)

    patch_id: PatchIdField
    oneoff_id: OptionalPatchIdField = None
    dependencies: PatchIdSetField = ()
    roles: StringSetField = ()
    post_commands: tuple[str, ...] = ()

    @pydantic.model_validator(mode="after")
    def check_invariants(self) -> typing.Self:
        _validate_oneoff(self.patch_id, self.oneoff_id)
        _validate_dependencies(self.patch_id, self.dependencies)
        _validate_roles(self.roles)
        _validate_post_commands(self.post_commands)
        return self

    @pydantic.field_serializer("patch_id")
    def serialize_patch_id(self, patch_id: patch_id_models.PatchId) -> str:
        return str(patch_id)

    @pydantic.field_serializer("oneoff_id")
    def serialize_oneoff_id(self, oneoff_id: patch_id_models.PatchId | None) -> str | None:
        return None if oneoff_id is None else str(oneoff_id)

    @pydantic.field_serializer("dependencies")
    def serialize_dependencies(
        self, dependencies: tuple[patch_id_models.PatchId, ...]
    ) -> list[str]:
        return [str(dep) for dep in dependencies]

    @property
    def package_metadata(self) -> PackageMetadata:
        return PackageMetadata(
            patch_id=self.patch_id,
            oneoff_id=self.oneoff_id,
            dependencies=self.dependencies,
            post_commands=self.post_commands,
        )

    @classmethod
    def from_package(
        cls, package_metadata: PackageMetadata, roles: typing.Iterable[str] = ()
    ) -> typing.Self:
        return cls(
            patch_id=package_metadata.patch_id,
            oneoff_id=package_metadata.oneoff_id,
            dependencies=package_metadata.dependencies,
            roles=tuple(roles),
            post_commands=package_metadata.post_commands,
        )


class Patch(pydantic.BaseModel):
    """
    Patch metadata together with its content records, ordered by path.
    """

    model_config = pydantic.ConfigDict(frozen=True)

    metadata: PatchMetadata
    records: tuple[record_models.Record, ...] = ()

    @pydantic.field_validator("records")
    @classmethod
    def normalize_records(
        cls, input: tuple[record_models.Record, ...], info: pydantic.ValidationInfo
    ) -> tuple[record_models.Record, ...]:
        """
        Binds unbound records to the patch id and orders them by path.
        """
        metadata = info.data.get("metadata")
        if metadata is None:
            # The metadata failed validation and is reported on its own
            return input

        patch_id = metadata.patch_id
        records: dict[str, record_models.Record] = {}
        for record in input:
            if record.patch_id is None:
                record = dataclasses.replace(record, patch_id=patch_id)
            elif record.patch_id != patch_id:
                raise ValueError(f"Record {record} belongs to {record.patch_id}, not {patch_id}")

            if record.path in records:
                raise ValueError(f"Duplicate record path: {record.path}")
            records[record.path] = record

        return tuple(records[path] for path in sorted(records))

    @pydantic.field_serializer("records")
    def serialize_records(self, records: tuple[record_models.Record, ...]) -> list[str]:
        return [str(record) for record in records]

    @property
    def patch_id(self) -> patch_id_models.PatchId:
        return self.metadata.patch_id

    @classmethod
    def create(
        cls, metadata: PatchMetadata, records: typing.Iterable[record_models.Record] = ()
    ) -> typing.Self:
        return cls(metadata=metadata, records=tuple(records))
