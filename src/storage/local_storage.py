"""
GitLab Backup - Local Storage Module

Stores archives in a directory on the local filesystem.
"""

import logging
from pathlib import Path
from typing import Union

from cancellation import CancelToken
from exceptions import StorageError

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 32 * 1024


class LocalStorage:
    """Storage backend for a local directory."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def save(self, token: CancelToken, local_path: Path, dest_key: str) -> None:
        """Copy ``local_path`` to ``<directory>/<dest_key>``.

        Cancellation is checked after every chunk; a partially written
        destination is removed on any failure.
        """
        dest = self.directory / dest_key
        token.raise_if_cancelled()

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(local_path, "rb") as src, open(dest, "wb") as dst:
                while True:
                    chunk = src.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    token.raise_if_cancelled()
                    dst.write(chunk)
        except OSError as e:
            dest.unlink(missing_ok=True)
            raise StorageError(f"failed to copy {local_path} to {dest}: {e}") from e
        except BaseException:
            dest.unlink(missing_ok=True)
            raise

        logger.info(f"Saved {local_path.name} to {dest}")

    def get(self, token: CancelToken, key: str) -> Path:
        """Local keys are paths; nothing needs to be transferred."""
        token.raise_if_cancelled()
        return Path(key)
