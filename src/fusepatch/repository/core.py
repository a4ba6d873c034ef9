import collections.abc
import functools
import pathlib
import shutil
import typing

from fusepatch import archive, codec, constants, errors, util
from fusepatch.models import metadata as metadata_models
from fusepatch.models import patch_id as patch_id_models
from fusepatch.models import record as record_models
from fusepatch.repository import lock as repository_lock

Comparator = collections.abc.Callable[[patch_id_models.PatchId, patch_id_models.PatchId], int]


class Repository(typing.Protocol):
    """
    What the installer and the remote transport need from a patch repository.
    """

    def query_available(self, prefix: str | None = None) -> list[patch_id_models.PatchId]: ...

    def get_latest_available(
        self, prefix: str | None = None
    ) -> patch_id_models.PatchId | None: ...

    def get_patch(
        self, patch_id: patch_id_models.PatchId
    ) -> metadata_models.Patch | None: ...

    def add_archive(
        self,
        metadata: metadata_models.PackageMetadata,
        archive_stream: typing.BinaryIO,
        force: bool = False,
    ) -> patch_id_models.PatchId: ...

    def remove_archive(self, patch_id: patch_id_models.PatchId) -> bool: ...


class PatchRepository:
    """
    A repository of patches stored on the local filesystem:

        <root>/<name>/<version>/<name>-<version>.metadata
        <root>/<name>/<version>/<name>-<version>.zip

    Every operation holds the injected lock, which is only ever tried and never waited on.
    """

    def __init__(
        self,
        root_path: pathlib.Path,
        lock: repository_lock.Lock,
        comparator: Comparator = patch_id_models.patch_id_compare,
    ):
        self.root_path = root_path
        self.lock = lock
        self.comparator = comparator

    def metadata_directory(self, patch_id: patch_id_models.PatchId) -> pathlib.Path:
        return self.root_path / patch_id.name / str(patch_id.version)

    def metadata_file(self, patch_id: patch_id_models.PatchId) -> pathlib.Path:
        return self.metadata_directory(patch_id) / f"{patch_id}{constants.metadata_suffix}"

    def archive_file(self, patch_id: patch_id_models.PatchId) -> pathlib.Path:
        return self.metadata_directory(patch_id) / f"{patch_id}{constants.archive_suffix}"

    def _scan(self) -> dict[patch_id_models.PatchId, pathlib.Path]:
        """
        Finds every metadata file in the tree and checks that it sits where its name says
        it should.
        """
        found: dict[patch_id_models.PatchId, pathlib.Path] = {}
        if not self.root_path.is_dir():
            return found

        for path in sorted(self.root_path.rglob(f"*{constants.metadata_suffix}")):
            if path.name == constants.managed_paths_name or not path.is_file():
                continue

            try:
                patch_id = patch_id_models.PatchId.from_url(path)
            except errors.MalformedId as e:
                raise errors.RepositoryCorrupt(e.message, source=path) from e

            relative_parts = path.relative_to(self.root_path).parts
            if relative_parts[:-1] != (patch_id.name, str(patch_id.version)):
                raise errors.RepositoryCorrupt(
                    f"Metadata of {patch_id} is not stored under {patch_id.name}/"
                    f"{patch_id.version}",
                    source=path,
                )

            if patch_id in found:
                raise errors.RepositoryCorrupt(
                    f"Patch id {patch_id} is also derived from {found[patch_id]}", source=path
                )
            found[patch_id] = path

        return found

    def _find_stored(self, patch_id: patch_id_models.PatchId) -> patch_id_models.PatchId | None:
        """
        Returns the id, as spelled on disk, of stored metadata equal to `patch_id`.
        `foo-1.00` finds `foo/1.0/foo-1.0.metadata`.
        """
        if self.metadata_file(patch_id).is_file():
            return patch_id

        name_directory = self.root_path / patch_id.name
        if not name_directory.is_dir():
            return None

        for path in sorted(name_directory.iterdir()):
            if not path.is_dir():
                continue
            try:
                stored_id = patch_id_models.PatchId.create(patch_id.name, path.name)
            except errors.MalformedId:
                continue
            if stored_id == patch_id and self.metadata_file(stored_id).is_file():
                return stored_id
        return None

    def _locate(self, patch_id: patch_id_models.PatchId) -> patch_id_models.PatchId:
        stored_id = self._find_stored(patch_id)
        return patch_id if stored_id is None else stored_id

    def _query_available(
        self, prefix: str | None, latest_only: bool
    ) -> list[patch_id_models.PatchId]:
        groups: dict[str, list[patch_id_models.PatchId]] = {}
        for patch_id in self._scan():
            if prefix is not None and not patch_id.name.startswith(prefix):
                continue
            groups.setdefault(patch_id.name, []).append(patch_id)

        sort_key = functools.cmp_to_key(self.comparator)
        result: list[patch_id_models.PatchId] = []
        for group in groups.values():
            group.sort(key=sort_key)
            if latest_only:
                result.append(group[-1])
            else:
                result.extend(group)

        result.sort(key=sort_key, reverse=True)
        return result

    def query_available(
        self, prefix: str | None = None, latest_only: bool = False
    ) -> list[patch_id_models.PatchId]:
        """
        Returns the stored patch ids whose name starts with `prefix`, newest first.
        With `latest_only`, only the newest version of each name is returned.
        """
        with repository_lock.locked(self.lock, "query patches"):
            return self._query_available(prefix, latest_only)

    def get_latest_available(self, prefix: str | None = None) -> patch_id_models.PatchId | None:
        with repository_lock.locked(self.lock, "query patches"):
            result = self._query_available(prefix, latest_only=True)
        return result[0] if result else None

    def _read_patch(self, patch_id: patch_id_models.PatchId) -> metadata_models.Patch | None:
        stored_id = self._find_stored(patch_id)
        if stored_id is None:
            return None

        path = self.metadata_file(stored_id)
        patch = codec.read_patch_file(path)
        if patch.patch_id != patch_id:
            raise errors.RepositoryCorrupt(
                f"Expected metadata of {patch_id} but found {patch.patch_id}", source=path
            )
        return patch

    def read_patch(self, patch_id: patch_id_models.PatchId) -> metadata_models.Patch | None:
        """
        Returns the stored patch, or None when there is no such patch.
        """
        with repository_lock.locked(self.lock, f"read {patch_id}"):
            return self._read_patch(patch_id)

    def get_patch(self, patch_id: patch_id_models.PatchId) -> metadata_models.Patch | None:
        return self.read_patch(patch_id)

    def _write_patch(
        self, patch: metadata_models.Patch, stored_id: patch_id_models.PatchId
    ) -> pathlib.Path:
        path = self.metadata_file(stored_id)
        try:
            util.ensure_path(path.parent)
            with util.atomic_write(path) as f:
                codec.write_patch(patch, f)
        except OSError as e:
            raise errors.IOFailure(f"Cannot write metadata of {patch.patch_id}: {e}") from e
        return path

    def write_patch(self, patch: metadata_models.Patch) -> pathlib.Path:
        """
        Stores the metadata of `patch`, replacing what was stored for the same id.
        An equal id spelled differently on disk keeps its place in the tree.
        Readers never observe a partially written file.
        """
        with repository_lock.locked(self.lock, f"write {patch.patch_id}"):
            return self._write_patch(patch, self._locate(patch.patch_id))

    def add_archive(
        self,
        metadata: metadata_models.PackageMetadata,
        archive_stream: typing.BinaryIO,
        force: bool = False,
    ) -> patch_id_models.PatchId:
        """
        Stores a patch archive together with the metadata derived from it.
        Raises `DuplicatePatch` if an equal patch id is stored already, unless `force` is
        set, in which case the stored patch is replaced.
        """
        patch_id = metadata.patch_id
        with repository_lock.locked(self.lock, f"add {patch_id}"):
            stored_id = self._find_stored(patch_id)
            if stored_id is not None and not force:
                raise errors.DuplicatePatch(f"Repository already contains {stored_id}")

            archive_path = self.archive_file(patch_id)
            try:
                util.ensure_path(archive_path.parent)
                # The archive only replaces the stored one after its metadata is in place
                with util.atomic_write(archive_path, "w+b") as f:
                    shutil.copyfileobj(archive_stream, f)
                    f.flush()
                    f.seek(0)
                    patch = archive.build_patch(
                        metadata_models.PatchMetadata.from_package(metadata),
                        record_models.RecordAction.ADD,
                        f,
                    )
                    self._write_patch(patch, patch_id)

                # The replaced patch may be spelled differently, e.g. 1.0 for 1.00
                if stored_id is not None and str(stored_id) != str(patch_id):
                    util.remove_path(self.metadata_directory(stored_id))
            except OSError as e:
                raise errors.IOFailure(f"Cannot store archive of {patch_id}: {e}") from e

        return patch_id

    def open_archive(self, patch_id: patch_id_models.PatchId) -> typing.BinaryIO | None:
        """
        Opens the stored archive of a patch for reading. The caller closes it.
        """
        with repository_lock.locked(self.lock, f"read archive of {patch_id}"):
            path = self.archive_file(self._locate(patch_id))
            if not path.is_file():
                return None
            try:
                return path.open("rb")
            except OSError as e:
                raise errors.IOFailure(f"Cannot open archive of {patch_id}: {e}") from e

    def remove_archive(self, patch_id: patch_id_models.PatchId) -> bool:
        """
        Removes everything stored for a patch. Returns whether anything was removed.
        """
        with repository_lock.locked(self.lock, f"remove {patch_id}"):
            try:
                return util.remove_path(self.metadata_directory(self._locate(patch_id)))
            except OSError as e:
                raise errors.IOFailure(f"Cannot remove {patch_id}: {e}") from e
