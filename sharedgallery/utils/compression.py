"""
Image compression before upload.
Scales images down to a bounded resolution and re-encodes them as JPEG.
A failure at any step falls back to the untouched original.
"""
import io
import asyncio
from typing import Optional, Tuple

from PIL import Image

from sharedgallery.core.config import (
    COMPRESS_MAX_WIDTH,
    COMPRESS_MAX_HEIGHT,
    COMPRESS_QUALITY,
    COMPRESS_MIN_BYTES,
    logger,
)
from sharedgallery.models.items import SelectedFile

# Re-encoding these would drop their animation frames
ANIMATED_MIME_TYPES = {"image/gif", "image/apng"}


def probe_dimensions(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    """Pixel size from the image header, (None, None) when undecodable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except Exception:
        return None, None


def _flatten(img: Image.Image) -> Image.Image:
    # White background for transparency, JPEG has no alpha
    if img.mode in ('RGBA', 'P', 'LA'):
        if img.mode == 'P':
            img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1] if img.mode in ('RGBA', 'LA') else None)
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def compress_image(
    file: SelectedFile,
    max_width: int = COMPRESS_MAX_WIDTH,
    max_height: int = COMPRESS_MAX_HEIGHT,
    quality: int = COMPRESS_QUALITY,
    min_bytes: int = COMPRESS_MIN_BYTES,
) -> SelectedFile:
    """
    Re-encode an image to fit within max_width x max_height.

    Args:
        file: Selected file (bytes + declared MIME type)
        max_width / max_height: Bounding box, aspect ratio is preserved
        quality: JPEG quality (1-100)
        min_bytes: Files smaller than this are returned untouched

    Returns:
        The compressed file (same name, image/jpeg) when strictly smaller,
        otherwise the original. Width/height are filled in when decodable.
    """
    ctype = (file.content_type or "").lower()
    if not ctype.startswith("image/") or ctype in ANIMATED_MIME_TYPES or file.size < min_bytes:
        if ctype.startswith("image/"):
            return file.with_dimensions(*probe_dimensions(file.data))
        return file

    try:
        with Image.open(io.BytesIO(file.data)) as src:
            src.load()
            orig_w, orig_h = src.size
            img = _flatten(src)

            width, height = orig_w, orig_h
            if width > max_width or height > max_height:
                ratio = min(max_width / width, max_height / height)
                width = max(1, round(width * ratio))
                height = max(1, round(height * ratio))
                img = img.resize((width, height), Image.Resampling.LANCZOS)

            buf = io.BytesIO()
            img.save(buf, format='JPEG', quality=quality, optimize=True)
            out = buf.getvalue()
    except Exception as ex:
        logger.warning(f"Compression skipped for {file.name}: {ex}")
        return file.with_dimensions(*probe_dimensions(file.data))

    if len(out) >= file.size:
        return file.with_dimensions(orig_w, orig_h)
    logger.debug(f"Compressed {file.name}: {file.size} -> {len(out)} bytes ({width}x{height})")
    return SelectedFile(name=file.name, data=out, content_type="image/jpeg", width=width, height=height)


async def compress_image_async(file: SelectedFile, **kwargs) -> SelectedFile:
    """compress_image in a worker thread; never raises."""
    try:
        return await asyncio.to_thread(compress_image, file, **kwargs)
    except Exception as ex:
        logger.warning(f"Compression worker failed for {file.name}: {ex}")
        return file
