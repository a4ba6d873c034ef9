import json
import logging
import pathlib
import typing

import pytest
import typer.testing

import fusepatch.main
from fusepatch import constants, errors
from fusepatch.cmd import repository as repository_cmd
from fusepatch.models import patch_id as patch_id_models

if typing.TYPE_CHECKING:
    import pyfakefs.fake_filesystem

    import tests.conftest


def test_query(
    repository_root: pathlib.Path,
    helpers: "tests.conftest.Helpers",
    caplog: pytest.LogCaptureFixture,
):
    # GIVEN: a repository with two versions of foo and a bar
    for spec in ["foo-1.0", "foo-2.0", "bar-1.0"]:
        helpers.store_metadata(repository_root, spec)
    caplog.set_level(logging.INFO, logger="fusepatch")

    # WHEN: querying the latest foo
    repository_cmd.query(prefix="foo", latest=True, repository=repository_root)

    # THEN: only foo-2.0 is printed
    assert caplog.messages == ["foo-2.0"]

    # WHEN: querying everything
    caplog.clear()
    repository_cmd.query(prefix=None, latest=False, repository=repository_root)

    # THEN: every patch is printed, newest first
    assert caplog.messages == ["foo-2.0", "foo-1.0", "bar-1.0"]

    # THEN: the lock file was released
    assert not (repository_root / constants.lock_file_name).exists()


def test_show(
    repository_root: pathlib.Path,
    helpers: "tests.conftest.Helpers",
    caplog: pytest.LogCaptureFixture,
):
    helpers.store_metadata(repository_root, "foo-1.0")
    caplog.set_level(logging.INFO, logger="fusepatch")

    repository_cmd.show("foo-1.0", repository=repository_root)

    shown = json.loads(caplog.messages[-1])
    assert shown["metadata"]["patch_id"] == "foo-1.0"
    assert shown["records"] == []


def test_show_missing(repository_root: pathlib.Path):
    with pytest.raises(RuntimeError):
        repository_cmd.show("foo-1.0", repository=repository_root)


def test_add_and_remove(
    fs: "pyfakefs.fake_filesystem.FakeFilesystem",
    repository_root: pathlib.Path,
    helpers: "tests.conftest.Helpers",
):
    # GIVEN: a patch archive named after its patch id
    archive_path = pathlib.Path("/work/foo-1.1.zip")
    fs.create_file(archive_path, contents=helpers.make_zip({"lib/x.jar": b"x"}))

    # WHEN: adding it
    repository_cmd.add(
        archive_path,
        patch_id=None,
        oneoff="foo-1.0",
        dependencies=["bar-1.0"],
        commands=["echo hi"],
        force=False,
        repository=repository_root,
    )

    # THEN: the archive is stored under the id derived from its file name
    metadata_file = repository_root / "foo/1.1/foo-1.1.metadata"
    assert metadata_file.exists()
    assert (repository_root / "foo/1.1/foo-1.1.zip").read_bytes() == archive_path.read_bytes()
    text = metadata_file.read_text(encoding="utf-8")
    assert "Oneoff: foo-1.0\n" in text
    assert "Dependencies: bar-1.0\n" in text
    assert "lib/x.jar|ADD|" in text

    # WHEN: adding it again without force
    # THEN: it is refused
    with pytest.raises(errors.DuplicatePatch):
        repository_cmd.add(
            archive_path,
            patch_id=None,
            oneoff=None,
            dependencies=None,
            commands=None,
            force=False,
            repository=repository_root,
        )

    # WHEN: removing it
    repository_cmd.remove("foo-1.1", repository=repository_root)

    # THEN: nothing is left
    assert not metadata_file.parent.exists()


def test_add_with_explicit_id(mocker, repository_root: pathlib.Path, fs):
    # GIVEN: an archive whose file name is not a patch id
    archive_path = pathlib.Path("/work/download.zip")
    fs.create_file(archive_path, contents=b"zip")
    add_archive_mock = mocker.patch(
        "fusepatch.cmd.repository.repository_core.PatchRepository.add_archive",
        return_value=patch_id_models.PatchId.from_string("foo-1.0"),
    )

    # WHEN: adding it with an explicit id
    repository_cmd.add(
        archive_path,
        patch_id="foo-1.0",
        oneoff=None,
        dependencies=None,
        commands=None,
        force=True,
        repository=repository_root,
    )

    # THEN: the repository receives metadata for that id
    add_archive_mock.assert_called_once()
    metadata = add_archive_mock.call_args.args[0]
    assert metadata.patch_id == patch_id_models.PatchId.from_string("foo-1.0")
    assert metadata.dependencies == ()
    assert add_archive_mock.call_args.kwargs["force"] is True


def test_add_missing_archive(repository_root: pathlib.Path):
    with pytest.raises(errors.IOFailure):
        repository_cmd.add(
            pathlib.Path("/work/foo-1.0.zip"),
            patch_id=None,
            oneoff=None,
            dependencies=None,
            commands=None,
            force=False,
            repository=repository_root,
        )


def test_remove_missing(repository_root: pathlib.Path, caplog: pytest.LogCaptureFixture):
    caplog.set_level(logging.INFO, logger="fusepatch")

    repository_cmd.remove("foo-1.0", repository=repository_root)

    assert caplog.messages == ["Nothing to remove for foo-1.0"]


def test_cli_version():
    result = typer.testing.CliRunner().invoke(fusepatch.main.app, ["version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == constants.fusepatch_version
