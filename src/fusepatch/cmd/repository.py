import pathlib
import typing

import typer

import fusepatch.logging
from fusepatch import constants, errors, util
from fusepatch.models import metadata as metadata_models
from fusepatch.models import patch_id as patch_id_models
from fusepatch.repository import core as repository_core
from fusepatch.repository import lock as repository_lock

repository_app = typer.Typer()

RepositoryOption = typing.Annotated[
    pathlib.Path, typer.Option("--repository", help="Root of the patch repository")
]


def open_repository(root_path: pathlib.Path) -> repository_core.PatchRepository:
    fusepatch.logging.debug("Opening patch repository at %s", root_path)
    util.ensure_path(root_path)
    return repository_core.PatchRepository(
        root_path, repository_lock.LockFile(root_path / constants.lock_file_name)
    )


@repository_app.command()
def query(
    prefix: typing.Annotated[str | None, typer.Option(help="Only patches named like this")] = None,
    latest: typing.Annotated[bool, typer.Option(help="Only the latest version per name")] = False,
    repository: RepositoryOption = constants.fusepatch_repository_dir,
):
    patch_repository = open_repository(repository)
    for patch_id in patch_repository.query_available(prefix, latest_only=latest):
        fusepatch.logging.info("%s", patch_id)


@repository_app.command()
def show(
    patch_id: typing.Annotated[str, typer.Argument(help="Patch id, e.g. foo-1.0")],
    repository: RepositoryOption = constants.fusepatch_repository_dir,
):
    patch_repository = open_repository(repository)
    patch = patch_repository.get_patch(patch_id_models.PatchId.from_string(patch_id))
    if patch is None:
        raise RuntimeError(f"Patch {patch_id} not found in {repository}")

    fusepatch.logging.info("%s", patch.model_dump_json(indent=2))


@repository_app.command()
def add(
    archive_path: typing.Annotated[pathlib.Path, typer.Argument(help="Patch archive (zip)")],
    patch_id: typing.Annotated[
        str | None, typer.Option("--id", help="Patch id, derived from the file name by default")
    ] = None,
    oneoff: typing.Annotated[str | None, typer.Option(help="Patch amended by this one")] = None,
    dependencies: typing.Annotated[
        list[str] | None, typer.Option("--dependency", help="Required patch id")
    ] = None,
    commands: typing.Annotated[
        list[str] | None, typer.Option("--command", help="Post install command")
    ] = None,
    force: typing.Annotated[bool, typer.Option(help="Replace an existing patch")] = False,
    repository: RepositoryOption = constants.fusepatch_repository_dir,
):
    resolved_id = (
        patch_id_models.PatchId.from_url(archive_path)
        if patch_id is None
        else patch_id_models.PatchId.from_string(patch_id)
    )
    metadata = metadata_models.PackageMetadata(
        patch_id=resolved_id,
        oneoff_id=oneoff,
        dependencies=dependencies if dependencies is not None else [],
        post_commands=commands if commands is not None else [],
    )

    patch_repository = open_repository(repository)
    try:
        with archive_path.open("rb") as f:
            added = patch_repository.add_archive(metadata, f, force=force)
    except OSError as e:
        raise errors.IOFailure(f"Cannot read {archive_path}: {e}") from e

    fusepatch.logging.info("Added %s", added)


@repository_app.command()
def remove(
    patch_id: typing.Annotated[str, typer.Argument(help="Patch id, e.g. foo-1.0")],
    repository: RepositoryOption = constants.fusepatch_repository_dir,
):
    patch_repository = open_repository(repository)
    if patch_repository.remove_archive(patch_id_models.PatchId.from_string(patch_id)):
        fusepatch.logging.info("Removed %s", patch_id)
    else:
        fusepatch.logging.info("Nothing to remove for %s", patch_id)
