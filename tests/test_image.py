"""Tests for storage/image.py - system image validation and chunked copy."""

import os

import pytest

from appliance_installer.storage import image
from appliance_installer.storage.exceptions import SystemImageError


CHUNK = 4096


class TestValidateSystemImage:
    def test_returns_size(self, system_image):
        assert image.validate_system_image(system_image) == 3 * CHUNK + 100

    def test_missing(self, tmp_path):
        with pytest.raises(SystemImageError, match="unable to stat"):
            image.validate_system_image(tmp_path / "missing.img")

    def test_empty(self, tmp_path):
        empty = tmp_path / "empty.img"
        empty.touch()
        with pytest.raises(SystemImageError, match="empty"):
            image.validate_system_image(empty)

    def test_directory(self, tmp_path):
        with pytest.raises(SystemImageError, match="not a regular file"):
            image.validate_system_image(tmp_path)


class TestCopySystemImage:
    def test_copies_bytes_exactly(self, system_image, tmp_path):
        dest = tmp_path / "out.img"

        copied = image.copy_system_image(system_image, dest, chunk_size=CHUNK)

        assert copied == 3 * CHUNK + 100
        assert dest.read_bytes() == system_image.read_bytes()

    def test_reports_progress_per_chunk(self, system_image, tmp_path):
        reports = []

        image.copy_system_image(
            system_image, tmp_path / "out.img", reports.append, chunk_size=CHUNK
        )

        total = 3 * CHUNK + 100
        assert reports == [CHUNK / total, 2 * CHUNK / total, 3 * CHUNK / total, 1.0]

    def test_syncs_every_chunk(self, system_image, tmp_path, mocker):
        fdatasync = mocker.spy(image.os, "fdatasync")

        image.copy_system_image(system_image, tmp_path / "out.img", chunk_size=CHUNK)

        assert fdatasync.call_count == 4

    def test_exact_multiple_of_chunk(self, tmp_path):
        source = tmp_path / "even.img"
        source.write_bytes(os.urandom(2 * CHUNK))
        reports = []

        copied = image.copy_system_image(
            source, tmp_path / "out.img", reports.append, chunk_size=CHUNK
        )

        assert copied == 2 * CHUNK
        assert reports == [0.5, 1.0]

    def test_missing_source_creates_nothing(self, tmp_path):
        dest = tmp_path / "out.img"
        with pytest.raises(SystemImageError):
            image.copy_system_image(tmp_path / "missing.img", dest)
        assert not dest.exists()

    def test_write_failure_propagates(self, system_image, tmp_path):
        with pytest.raises(OSError):
            image.copy_system_image(system_image, tmp_path / "no-such-dir" / "out.img")
