from pathlib import Path

from docinsight.recognition.exceptions import ImageLoadError


class ImageLoader:
    """Resolves an opaque image reference under the images root and reads its bytes."""

    IMAGES_ROOT = Path("/app/images")

    def __init__(self, images_root: Path | None = None) -> None:
        self._images_root = images_root if images_root is not None else self.IMAGES_ROOT

    def load(self, image_ref: str) -> bytes:
        """Read image bytes from disk.

        Raises:
            ImageLoadError: if the reference escapes the root or the file is missing.
        """
        path = self._resolve_path(image_ref)
        if not path.is_file():
            raise ImageLoadError(f"Image not found: {image_ref}")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise ImageLoadError(f"Cannot read image {image_ref}: {exc}") from exc

    def _resolve_path(self, image_ref: str) -> Path:
        root = self._images_root.resolve()
        path = (root / image_ref).resolve()
        if root != path and root not in path.parents:
            raise ImageLoadError(f"Image reference outside images root: {image_ref}")
        return path
