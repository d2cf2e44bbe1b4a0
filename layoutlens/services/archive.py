from __future__ import annotations

import logging
import os
import re
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import List

from layoutlens.errors import NotFoundError, WorkspaceIOError
from layoutlens.services.artifacts import RunStore, RunWorkspace

LOGGER = logging.getLogger("layoutlens.archive")

# Only a bare drive such as "C:" is unsafe; "shot:1.png" is a legal name.
_DRIVE_SPEC = re.compile(r"^[A-Za-z]:$")


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    # Unix zips keep the file mode in the top 16 bits.
    mode = (info.external_attr >> 16) & 0xFFFF
    return (mode & 0o170000) == 0o120000


def _safe_parts(name: str) -> List[str]:
    """Return the path components of an entry, rejecting anything that escapes the workspace."""
    normalized = name.replace("\\", "/")
    posix = PurePosixPath(normalized)
    if posix.is_absolute() or normalized.startswith("/") or ".." in posix.parts:
        raise WorkspaceIOError(f"Unsafe archive entry: {name!r}", code="zip_slip")
    parts = [part for part in posix.parts if part not in ("", ".")]
    if parts and _DRIVE_SPEC.match(parts[0]):
        raise WorkspaceIOError(f"Unsafe archive entry: {name!r}", code="zip_slip")
    return parts


def pack(workspace_dir: Path, dest_archive: Path) -> int:
    """Write every file and directory under ``workspace_dir`` into a deflated zip.

    Entry names are relative to the workspace root with forward slashes.
    Returns the number of file entries written.
    """
    source = Path(workspace_dir)
    if not source.is_dir():
        raise NotFoundError(f"Run directory not found: {source}")
    destination = Path(dest_archive)
    file_count = 0
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for walk_root, dirs, files in os.walk(source):
                dirs.sort()
                current = Path(walk_root)
                relative_dir = current.relative_to(source).as_posix()
                if relative_dir and relative_dir != ".":
                    dir_info = zipfile.ZipInfo(f"{relative_dir}/")
                    dir_info.external_attr = (0o40755 << 16) | 0x10
                    archive.writestr(dir_info, b"")
                for filename in sorted(files):
                    file_path = current / filename
                    if file_path.resolve() == destination.resolve():
                        continue
                    arcname = file_path.relative_to(source).as_posix()
                    archive.write(file_path, arcname)
                    file_count += 1
    except OSError as exc:
        raise WorkspaceIOError(f"Failed to export {source} to {destination}: {exc}") from exc
    LOGGER.info("Exported %s (%s files) to %s", source, file_count, destination)
    return file_count


def unpack(archive_path: Path, store: RunStore) -> RunWorkspace:
    """Extract an archive into a newly allocated ``import-`` workspace."""
    source = Path(archive_path)
    if not source.is_file():
        raise NotFoundError(f"Archive not found: {source}")
    workspace = store.allocate(imported=True)
    try:
        with zipfile.ZipFile(source) as archive:
            infos = archive.infolist()
            for info in infos:
                if _is_symlink(info):
                    raise WorkspaceIOError(f"Symlink entries are not allowed: {info.filename!r}", code="symlink_not_allowed")
                _safe_parts(info.filename)

            for info in infos:
                parts = _safe_parts(info.filename)
                if not parts:
                    continue
                target = workspace.path.joinpath(*parts)
                if info.filename.endswith(("/", "\\")):
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(archive.read(info))
    except (zipfile.BadZipFile, zlib.error) as exc:
        raise WorkspaceIOError(f"Corrupt archive {source}: {exc}", code="bad_zip") from exc
    except OSError as exc:
        raise WorkspaceIOError(f"Failed to import {source} into {workspace.path}: {exc}") from exc
    LOGGER.info("Imported %s into workspace %s", source, workspace.run_id)
    return workspace
