import os
import pathlib

fusepatch_version = "2.0.0"

fusepatch_data_dir = pathlib.Path.home() / ".fusepatch"

fusepatch_repository_dir = pathlib.Path(
    os.environ.get("FUSEPATCH_REPOSITORY") or fusepatch_data_dir / "repository"
)

# Owned by the installer, never reported by repository queries
managed_paths_name = "managed-paths.metadata"

metadata_suffix = ".metadata"
archive_suffix = ".zip"
lock_file_name = ".lock"
