import io
from pathlib import Path

import pytest
from PIL import Image


def make_png(
    width: int = 200, height: int = 100, color: tuple[int, int, int] = (255, 255, 255)
) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def white_png_bytes() -> bytes:
    """A blank 200x100 white page."""
    return make_png()


@pytest.fixture()
def images_root(tmp_path: Path, white_png_bytes: bytes) -> Path:
    """Images root holding ``page.png``."""
    (tmp_path / "page.png").write_bytes(white_png_bytes)
    return tmp_path
