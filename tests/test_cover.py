from __future__ import annotations

import base64
import random
import struct
from io import BytesIO
from pathlib import Path

import pytest

pytest.importorskip("PIL")
from PIL import Image

from makeebook import cover
from makeebook.cover import (
    COVER_MAX_HEIGHT,
    COVER_MAX_WIDTH,
    build_data_url,
    fit_within,
    parse_data_url,
    process_cover,
)


def _image_bytes(size: tuple[int, int], *, mode: str = "RGB", fmt: str = "JPEG", color=(200, 30, 30)) -> bytes:
    with BytesIO() as buffer:
        Image.new(mode, size, color).save(buffer, format=fmt)
        return buffer.getvalue()


def _decode(data_url: str) -> Image.Image:
    info = parse_data_url(data_url)
    assert info is not None
    img = Image.open(BytesIO(info.data))
    img.load()
    return img


def test_large_cover_is_scaled_into_bounds() -> None:
    artifact = process_cover(_image_bytes((4000, 6000)))
    assert artifact.compressed is True
    assert artifact.media_type == "image/jpeg"
    assert (artifact.width, artifact.height) == (COVER_MAX_WIDTH, COVER_MAX_HEIGHT)
    img = _decode(artifact.data_url)
    assert img.size == (1200, 1800)
    assert img.format == "JPEG"


def test_wide_cover_keeps_aspect_ratio() -> None:
    artifact = process_cover(_image_bytes((3000, 1000)))
    assert (artifact.width, artifact.height) == (1200, 400)
    assert abs(artifact.width / artifact.height - 3.0) < 0.01


def test_small_cover_is_not_upscaled() -> None:
    artifact = process_cover(_image_bytes((300, 200), fmt="PNG"))
    assert (artifact.width, artifact.height) == (300, 200)
    assert artifact.media_type == "image/jpeg"


def test_custom_bounds_and_quality() -> None:
    artifact = process_cover(_image_bytes((1000, 1000)), max_width=100, max_height=50, quality=40)
    assert (artifact.width, artifact.height) == (50, 50)


def test_transparent_png_stays_png() -> None:
    raw = _image_bytes((2400, 1200), mode="RGBA", fmt="PNG", color=(0, 0, 255, 0))
    artifact = process_cover(raw)
    assert artifact.media_type == "image/png"
    img = _decode(artifact.data_url)
    assert img.mode == "RGBA"
    assert img.size == (1200, 600)
    assert img.getpixel((0, 0))[3] == 0


def test_opaque_png_becomes_jpeg() -> None:
    artifact = process_cover(_image_bytes((400, 600), fmt="PNG"))
    assert artifact.media_type == "image/jpeg"
    assert artifact.data_url.startswith("data:image/jpeg;base64,")


def test_undecodable_bytes_fall_back_to_raw_data_url() -> None:
    raw = b"definitely not an image"
    artifact = process_cover(raw, filename="cover.jpg")
    assert artifact.compressed is False
    assert artifact.width is None and artifact.height is None
    assert artifact.media_type == "image/jpeg"
    assert artifact.data_url == "data:image/jpeg;base64," + base64.b64encode(raw).decode("ascii")


def test_fallback_without_filename_uses_generic_media_type() -> None:
    artifact = process_cover(b"\x00\x01\x02")
    assert artifact.compressed is False
    assert artifact.data_url.startswith("data:application/octet-stream;base64,")


def _noisy_png(size: tuple[int, int] = (300, 300)) -> bytes:
    # Incompressible pixels so the encoder splits the data over several IDAT chunks.
    pixels = random.Random(7).randbytes(size[0] * size[1] * 3)
    with BytesIO() as buffer:
        Image.frombytes("RGB", size, pixels).save(buffer, format="PNG")
        return buffer.getvalue()


def test_damaged_png_chunk_name_falls_back() -> None:
    raw = _noisy_png()
    second_idat = raw.index(b"IDAT", raw.index(b"IDAT") + 4)
    damaged = raw[:second_idat] + b"ID-T" + raw[second_idat + 4 :]
    artifact = process_cover(damaged, filename="cover.png")
    assert artifact.data_url.startswith("data:image/")
    if not artifact.compressed:
        assert artifact.media_type == "image/png"
        assert parse_data_url(artifact.data_url).data == damaged


@pytest.mark.parametrize(
    "error",
    [
        SyntaxError("broken PNG file (chunk b'IEN-')"),
        struct.error("unpack requires a buffer of 4 bytes"),
        Image.DecompressionBombError("too many pixels"),
        EOFError(),
    ],
)
def test_decoder_errors_never_escape(monkeypatch: pytest.MonkeyPatch, error: Exception) -> None:
    def _explode(*args, **kwargs):
        raise error

    monkeypatch.setattr(cover, "_compress", _explode)
    raw = _image_bytes((20, 20), fmt="PNG")
    artifact = process_cover(raw, filename="cover.png")
    assert artifact.compressed is False
    assert artifact.media_type == "image/png"


def test_truncated_png_falls_back_using_magic_bytes() -> None:
    raw = _image_bytes((50, 50), fmt="PNG")[:40]
    artifact = process_cover(raw)
    assert artifact.compressed is False
    assert artifact.media_type == "image/png"


def test_path_input(tmp_path: Path) -> None:
    path = tmp_path / "cover.png"
    path.write_bytes(_image_bytes((10, 20), fmt="PNG"))
    artifact = process_cover(path)
    assert (artifact.width, artifact.height) == (10, 20)
    assert artifact.byte_length > 0


def test_parse_data_url() -> None:
    info = parse_data_url(build_data_url("image/jpeg", b"abc"))
    assert info is not None
    assert info.mime == "image/jpeg"
    assert info.data == b"abc"
    assert info.ext == "jpg"
    assert parse_data_url("data:image/png;base64,%%%") is None
    assert parse_data_url("data:text/plain;base64,YWJj") is None
    assert parse_data_url(None) is None


def test_fit_within() -> None:
    assert fit_within(4000, 6000, 1200, 1800) == (1200, 1800)
    assert fit_within(100, 100, 1200, 1800) == (100, 100)
    assert fit_within(1801, 10, 1200, 1800) == (1200, 7)
    with pytest.raises(ValueError):
        fit_within(0, 10, 1200, 1800)
