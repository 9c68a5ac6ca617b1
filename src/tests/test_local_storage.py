"""
GitLab Backup - Local Storage Tests

Tests for the local directory storage backend.
"""

from pathlib import Path

import pytest

from cancellation import CancelToken, OperationCancelled
from exceptions import StorageError
from storage.local_storage import COPY_CHUNK_SIZE, LocalStorage


class TestLocalStorage:
    """Tests for LocalStorage."""

    def test_save_copies_file(self, temp_dir: Path, export_archive: Path, cancel):
        backups = temp_dir / "backups"
        backups.mkdir()

        LocalStorage(backups).save(cancel, export_archive, export_archive.name)

        assert (backups / export_archive.name).read_bytes() == export_archive.read_bytes()

    def test_save_creates_subdirectories(self, temp_dir: Path, export_archive: Path, cancel):
        storage = LocalStorage(temp_dir / "backups")

        storage.save(cancel, export_archive, "group/sub/app.tar.gz")

        assert (temp_dir / "backups" / "group" / "sub" / "app.tar.gz").exists()

    def test_cancelled_save_removes_partial_file(self, temp_dir: Path):
        """Test that cancelling mid-copy leaves no partial archive behind."""
        source = temp_dir / "big.tar.gz"
        source.write_bytes(b"x" * (COPY_CHUNK_SIZE * 4))
        backups = temp_dir / "backups"
        backups.mkdir()

        class CancelAfterFirstChunk(CancelToken):
            checks = 0

            def raise_if_cancelled(self):
                self.checks += 1
                if self.checks > 2:
                    self.cancel()
                super().raise_if_cancelled()

        with pytest.raises(OperationCancelled):
            LocalStorage(backups).save(CancelAfterFirstChunk(), source, "big.tar.gz")

        assert not (backups / "big.tar.gz").exists()

    def test_missing_source(self, temp_dir: Path, cancel):
        storage = LocalStorage(temp_dir)

        with pytest.raises(StorageError, match="failed to copy"):
            storage.save(cancel, temp_dir / "missing.tar.gz", "missing.tar.gz")

        assert not (temp_dir / "missing.tar.gz").exists()

    def test_get_returns_path(self, temp_dir: Path, cancel):
        assert LocalStorage(temp_dir).get(cancel, "/backups/app.tar.gz") == Path("/backups/app.tar.gz")
