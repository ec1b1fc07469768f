import asyncio
import io

from PIL import Image

from conftest import big_bmp_bytes, image_file, jpeg_bytes, noise_jpeg_bytes
from sharedgallery.models.items import SelectedFile
from sharedgallery.utils.compression import compress_image, compress_image_async, probe_dimensions


def gif_bytes(width=300, height=300) -> bytes:
    frames = [Image.new("P", (width, height), c) for c in (1, 2, 3)]
    buf = io.BytesIO()
    frames[0].save(buf, format="GIF", save_all=True, append_images=frames[1:])
    return buf.getvalue()


def test_large_bitmap_is_scaled_and_reencoded():
    scan = SelectedFile(name="scan.bmp", data=big_bmp_bytes(), content_type="image/bmp")

    out = compress_image(scan)

    assert out.content_type == "image/jpeg"
    assert out.name == "scan.bmp"
    assert out.size < scan.size
    assert (out.width, out.height) == (1920, 1280)
    assert probe_dimensions(out.data) == (1920, 1280)


def test_small_files_pass_through_with_dimensions():
    f = image_file("tiny.jpg", jpeg_bytes(64, 48))

    out = compress_image(f)

    assert out.data == f.data
    assert out.content_type == "image/jpeg"
    assert (out.width, out.height) == (64, 48)


def test_animated_images_are_never_reencoded():
    f = SelectedFile(name="anim.gif", data=gif_bytes(), content_type="image/gif")

    out = compress_image(f, min_bytes=0)

    assert out.data == f.data
    assert out.content_type == "image/gif"


def test_non_images_are_untouched():
    f = SelectedFile(name="notes.txt", data=b"x" * 200_000, content_type="text/plain")
    assert compress_image(f) is f


def test_result_is_never_larger_than_the_input():
    f = image_file("noise.jpg", noise_jpeg_bytes())

    out = compress_image(f, quality=95, min_bytes=0)

    assert out.size <= f.size
    assert (out.width, out.height) == (600, 600)


def test_corrupt_image_falls_back_to_the_original():
    f = SelectedFile(name="broken.png", data=b"\x89PNG" + b"\x00" * 200_000, content_type="image/png")

    out = compress_image(f)

    assert out.data == f.data
    assert out.content_type == "image/png"
    assert (out.width, out.height) == (None, None)


def test_async_wrapper_returns_the_compressed_file():
    scan = SelectedFile(name="scan.bmp", data=big_bmp_bytes(), content_type="image/bmp")

    out = asyncio.run(compress_image_async(scan, max_width=800, max_height=800))

    assert out.content_type == "image/jpeg"
    assert max(out.width, out.height) == 800
