"""GitLab Backup - Storage Module"""

from .archive import Archive, ArchiveContents, create_composite_archive, extract_archive, validate_archive
from .base import Storage
from .local_storage import LocalStorage
from .s3_client import MultipartUploader, S3Storage

__all__ = [
    "Storage",
    "LocalStorage",
    "S3Storage",
    "MultipartUploader",
    "Archive",
    "ArchiveContents",
    "validate_archive",
    "extract_archive",
    "create_composite_archive",
]
