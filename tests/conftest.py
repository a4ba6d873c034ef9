import io
import pathlib
import typing
import zipfile

import pyfakefs.fake_filesystem
import pytest

from fusepatch import codec
from fusepatch.models import metadata as metadata_models
from fusepatch.models import patch_id as patch_id_models
from fusepatch.models import record as record_models
from fusepatch.repository import core as repository_core


class MockLock:
    """
    Lock double that remembers how it was used.
    """

    def __init__(self, busy: bool = False):
        self.busy = busy
        self.held = False
        self.acquired = 0
        self.released = 0

    def try_lock(self) -> bool:
        if self.busy or self.held:
            return False
        self.held = True
        self.acquired += 1
        return True

    def unlock(self) -> None:
        assert self.held, "unlock called without holding the lock"
        self.held = False
        self.released += 1


class Helpers:
    @staticmethod
    def make_zip(entries: dict[str, bytes | None]) -> bytes:
        """
        Builds a zip in memory. Entries mapped to None become directories.
        """
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, content in entries.items():
                if content is None:
                    zf.writestr(zipfile.ZipInfo(name), b"")
                else:
                    zf.writestr(name, content)
        return buffer.getvalue()

    @staticmethod
    def make_patch(
        patch_id: str,
        records: dict[str, int] | None = None,
        **metadata: typing.Any,
    ) -> metadata_models.Patch:
        patch_metadata = metadata_models.PatchMetadata.model_validate(
            {"patch_id": patch_id, **metadata}
        )
        return metadata_models.Patch.create(
            patch_metadata,
            [
                record_models.Record(
                    patch_metadata.patch_id, record_models.RecordAction.ADD, path, crc
                )
                for path, crc in (records or {}).items()
            ],
        )

    @staticmethod
    def store_metadata(
        root: pathlib.Path, patch_id: str, relative_dir: str | None = None
    ) -> pathlib.Path:
        """
        Writes metadata for `patch_id` into the canonical place below `root`, or below
        `relative_dir` when given.
        """
        parsed_id = patch_id_models.PatchId.from_string(patch_id)
        directory = (
            root / parsed_id.name / str(parsed_id.version)
            if relative_dir is None
            else root / relative_dir
        )
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{patch_id}.metadata"
        path.write_text(codec.dumps(Helpers.make_patch(patch_id)), encoding="utf-8")
        return path


@pytest.fixture(name="helpers")
def helpers_fixture() -> Helpers:
    return Helpers()


@pytest.fixture(name="repository_root")
def repository_root_fixture(fs: pyfakefs.fake_filesystem.FakeFilesystem) -> pathlib.Path:
    root = pathlib.Path("/repository")
    _ = fs.create_dir(root)
    return root


@pytest.fixture(name="mock_lock")
def mock_lock_fixture() -> MockLock:
    return MockLock()


@pytest.fixture(name="busy_lock")
def busy_lock_fixture() -> MockLock:
    return MockLock(busy=True)


@pytest.fixture(name="patch_repository")
def patch_repository_fixture(
    repository_root: pathlib.Path, mock_lock: MockLock
) -> repository_core.PatchRepository:
    return repository_core.PatchRepository(repository_root, mock_lock)

