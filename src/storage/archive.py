"""
GitLab Backup - Archive Module

Validation and extraction of backup archives.

Archives created by gitlab-backup are the GitLab native export itself
(``<name>-<id>.tar.gz``) and are passed to the import API unchanged.
Archives written by older releases were composite: a tar.gz holding the
GitLab export plus ``labels.json`` / ``issues.json``. For those the export
member is extracted and the metadata members are ignored.
"""

import gzip
import logging
import os
import posixpath
import shutil
import tarfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from cancellation import CancelToken
from exceptions import (
    ArchiveEmptyError,
    ArchiveError,
    ArchiveIsDirectoryError,
    ArchiveNotFoundError,
    InvalidGzipError,
    InvalidTarError,
    MissingExportError,
    PathTraversalError,
)

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
EXPORT_SUFFIX = ".tar.gz"
LEGACY_METADATA_MEMBERS = frozenset({"labels.json", "issues.json"})
COPY_CHUNK_SIZE = 32 * 1024

PathLike = Union[str, Path]


@dataclass
class ArchiveContents:
    """Where the import-ready GitLab export ended up."""

    project_export_path: Path
    extraction_dir: Path
    legacy: bool = False
    bytes_extracted: int = 0


@dataclass
class Archive:
    """A backup archive and what is known about it."""

    path: str
    storage_type: str = "local"
    size: int = 0
    local_path: Optional[Path] = None
    validated: bool = False
    contents: Optional[ArchiveContents] = field(default=None, repr=False)


# ═══════════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════════


def validate_archive(path: PathLike) -> None:
    """Check that ``path`` is a readable tar.gz archive without extracting it.

    Checks, in order: exists, is a file, is non-empty, gzip header, tar header.

    Raises:
        ArchiveNotFoundError, ArchiveIsDirectoryError, ArchiveEmptyError,
        InvalidGzipError, InvalidTarError: First failed check.
    """
    path = Path(path)

    if not path.exists():
        raise ArchiveNotFoundError(f"archive not found: {path}")
    if path.is_dir():
        raise ArchiveIsDirectoryError(f"archive path is a directory: {path}")
    if path.stat().st_size == 0:
        raise ArchiveEmptyError(f"archive is empty: {path}")

    with open(path, "rb") as f:
        if f.read(len(GZIP_MAGIC)) != GZIP_MAGIC:
            raise InvalidGzipError(f"invalid gzip format: {path}")

    try:
        with gzip.open(path, "rb") as gz:
            with tarfile.open(fileobj=gz, mode="r|") as tar:
                tar.next()
    except tarfile.TarError as e:
        raise InvalidTarError(f"invalid tar format: {path}: {e}") from e
    except (OSError, EOFError, zlib.error) as e:
        raise InvalidGzipError(f"invalid gzip format: {path}: {e}") from e


# ═══════════════════════════════════════════════════════════════════════════════
# Extraction
# ═══════════════════════════════════════════════════════════════════════════════


def check_member_path(name: str) -> None:
    """Reject member names that would escape the extraction directory.

    Raises:
        PathTraversalError: Name is absolute or contains a '..' segment.
    """
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or posixpath.isabs(normalized) or _has_drive(normalized):
        raise PathTraversalError(f"path traversal: absolute member path {name!r}")
    if ".." in normalized.split("/") or ".." in posixpath.normpath(normalized).split("/"):
        raise PathTraversalError(f"path traversal: member path {name!r} leaves the archive")


def _has_drive(name: str) -> bool:
    return len(name) >= 2 and name[1] == ":" and name[0].isalpha()


def _is_top_level_export(name: str) -> bool:
    name = posixpath.normpath(name)
    return "/" not in name and name.endswith(EXPORT_SUFFIX)


def _is_legacy(names: list[str]) -> bool:
    """Legacy archives carry metadata JSON or a nested export at the top level."""
    return any(
        posixpath.normpath(n) in LEGACY_METADATA_MEMBERS or _is_top_level_export(n)
        for n in names
    )


def extract_archive(cancel: CancelToken, path: PathLike, dest_dir: PathLike) -> ArchiveContents:
    """Resolve an archive to the GitLab export that can be imported.

    Every member path is checked before anything is written. Modern archives
    are returned unchanged; for legacy composite archives the export member
    is copied into ``dest_dir``.

    Raises:
        OperationCancelled: ``cancel`` fired before any filesystem work.
        ArchiveError: Invalid archive, unsafe member path or missing export.
    """
    cancel.raise_if_cancelled()

    path = Path(path)
    dest_dir = Path(dest_dir)
    validate_archive(path)

    try:
        with tarfile.open(path, mode="r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                check_member_path(member.name)
                if member.issym() or member.islnk():
                    check_member_path(member.linkname)

            names = [m.name for m in members]
            if not _is_legacy(names):
                return ArchiveContents(project_export_path=path, extraction_dir=dest_dir)

            logger.info(f"{path.name} is a legacy composite archive, extracting the GitLab export")
            export_member = next(
                (m for m in members if m.isfile() and _is_top_level_export(m.name)), None
            )
            if export_member is None:
                raise MissingExportError(f"no GitLab export found in legacy archive {path}")

            ignored = [n for n in names if n != export_member.name]
            if ignored:
                logger.debug(f"Ignoring legacy archive members: {', '.join(ignored)}")

            cancel.raise_if_cancelled()
            target = dest_dir / posixpath.basename(export_member.name)
            written = _extract_member(cancel, tar, export_member, target)
    except ArchiveError:
        raise
    except tarfile.TarError as e:
        raise InvalidTarError(f"invalid tar format: {path}: {e}") from e
    except (EOFError, zlib.error, gzip.BadGzipFile) as e:
        raise InvalidGzipError(f"invalid gzip format: {path}: {e}") from e

    validate_archive(target)
    return ArchiveContents(
        project_export_path=target,
        extraction_dir=dest_dir,
        legacy=True,
        bytes_extracted=written,
    )


def _extract_member(
    cancel: CancelToken, tar: tarfile.TarFile, member: tarfile.TarInfo, target: Path
) -> int:
    source = tar.extractfile(member)
    if source is None:
        raise MissingExportError(f"export member {member.name} is not a regular file")

    written = 0
    try:
        with source, open(target, "wb") as out:
            while True:
                chunk = source.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                cancel.raise_if_cancelled()
                out.write(chunk)
                written += len(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise
    return written


# ═══════════════════════════════════════════════════════════════════════════════
# Legacy writer
# ═══════════════════════════════════════════════════════════════════════════════


def create_composite_archive(
    export_path: PathLike,
    labels_path: Optional[PathLike],
    issues_path: Optional[PathLike],
    output_path: PathLike,
) -> Path:
    """Write a legacy composite archive (export + optional metadata JSON).

    Kept so that archives in the pre-native-export layout can still be
    produced for compatibility checks.
    """
    output_path = Path(output_path)
    tmp_path = output_path.with_name(output_path.name + ".tmp")

    try:
        with tarfile.open(tmp_path, mode="w:gz") as tar:
            tar.add(str(export_path), arcname=Path(export_path).name)
            if labels_path is not None:
                tar.add(str(labels_path), arcname="labels.json")
            if issues_path is not None:
                tar.add(str(issues_path), arcname="issues.json")
        shutil.move(str(tmp_path), str(output_path))
    except BaseException:
        if tmp_path.exists():
            os.remove(tmp_path)
        raise

    return output_path
