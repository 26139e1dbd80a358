import io

from PIL import Image, ImageDraw, UnidentifiedImageError

from docinsight.recognition.models import Region, TextBlock
from docinsight.redaction.models import PhiSpan


class ImageMaskError(Exception):
    """Raised when an image cannot be decoded for masking."""


def regions_with_phi(blocks: list[TextBlock], spans: list[PhiSpan]) -> list[Region]:
    """Regions of every block whose text range overlaps a PHI span."""
    regions: list[Region] = []
    for block in blocks:
        if block.region is None:
            continue
        if any(span.overlaps(block.offset, block.offset + len(block.text)) for span in spans):
            regions.append(block.region)
    return regions


def mask_image(image_bytes: bytes, regions: list[Region], padding: int = 2) -> bytes:
    """Paint solid black boxes over *regions* and return PNG bytes.

    Raises:
        ImageMaskError: if the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            canvas = img.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageMaskError(f"Cannot decode image for masking: {exc}") from exc

    draw = ImageDraw.Draw(canvas)
    for region in regions:
        draw.rectangle(
            (
                max(0, region.x - padding),
                max(0, region.y - padding),
                region.x + region.width + padding,
                region.y + region.height + padding,
            ),
            fill=(0, 0, 0),
        )
    out = io.BytesIO()
    canvas.save(out, format="PNG")
    return out.getvalue()
