from pathlib import Path

import pytest

from docinsight.recognition.exceptions import ImageLoadError, LocalEngineFailure
from docinsight.recognition.image_loader import ImageLoader


class TestImageLoader:
    def test_reads_bytes(self, images_root: Path, white_png_bytes: bytes) -> None:
        assert ImageLoader(images_root).load("page.png") == white_png_bytes

    def test_reads_from_subdirectory(self, tmp_path: Path) -> None:
        (tmp_path / "scans").mkdir()
        (tmp_path / "scans" / "a.png").write_bytes(b"data")
        assert ImageLoader(tmp_path).load("scans/a.png") == b"data"

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ImageLoadError, match="Image not found"):
            ImageLoader(tmp_path).load("missing.png")

    def test_directory_is_not_an_image(self, tmp_path: Path) -> None:
        (tmp_path / "dir").mkdir()
        with pytest.raises(ImageLoadError):
            ImageLoader(tmp_path).load("dir")

    def test_rejects_path_outside_root(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        root.mkdir()
        (tmp_path / "secret.png").write_bytes(b"x")
        with pytest.raises(ImageLoadError, match="outside images root"):
            ImageLoader(root).load("../secret.png")

    def test_load_error_is_local_engine_failure(self, tmp_path: Path) -> None:
        with pytest.raises(LocalEngineFailure):
            ImageLoader(tmp_path).load("missing.png")
