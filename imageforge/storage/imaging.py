"""Image encoding helpers: PNG normalization and thumbnails."""

from io import BytesIO

from PIL import Image

# Modes PNG can store without conversion
_PNG_MODES = {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"}


def _encode_png(img: Image.Image) -> bytes:
    if img.mode not in _PNG_MODES:
        img = img.convert("RGBA")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def normalize_png(data: bytes) -> bytes:
    """Re-encode image bytes as PNG. PNG input is returned unchanged.

    Raises PIL.UnidentifiedImageError (an OSError) for undecodable data.
    """
    with Image.open(BytesIO(data)) as img:
        if img.format == "PNG":
            return data
        img.load()
        return _encode_png(img)


def make_thumbnail(data: bytes, max_size: int = 256) -> bytes:
    """Aspect-preserving PNG thumbnail whose long edge is at most max_size."""
    with Image.open(BytesIO(data)) as img:
        img.load()
        thumb = img.copy()
    # thumbnail() never upscales
    thumb.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
    return _encode_png(thumb)
