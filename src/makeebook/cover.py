from __future__ import annotations

import base64
import binascii
import mimetypes
import re
import struct
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from PIL import Image

from .logging_utils import debug_log

COVER_MAX_WIDTH = 1200
COVER_MAX_HEIGHT = 1800
COVER_QUALITY = 85
_ALPHA_FORMATS = {"PNG", "GIF", "WEBP"}
_ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}
_DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)
_FALLBACK_MEDIA_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class CoverArtifact:
    data_url: str
    media_type: str
    width: int | None = None
    height: int | None = None
    compressed: bool = True

    @property
    def byte_length(self) -> int:
        info = parse_data_url(self.data_url)
        if info is not None:
            return len(info.data)
        _, _, encoded = self.data_url.partition(",")
        return len(encoded) * 3 // 4


@dataclass(frozen=True)
class CoverFileInfo:
    mime: str
    data: bytes
    ext: str


def parse_data_url(value: str | None) -> CoverFileInfo | None:
    """Split an ``image/*`` base64 data URL into media type, bytes and extension."""
    match = _DATA_URL_RE.match(value or "")
    if not match:
        return None
    mime = match.group(1)
    try:
        data = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        return None
    ext = mime.split("/", 1)[1]
    if ext == "jpeg":
        ext = "jpg"
    return CoverFileInfo(mime=mime, data=data, ext=ext)


def build_data_url(media_type: str, data: bytes) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Scale ``width`` x ``height`` uniformly to fit the bounds, never upscaling."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {width}x{height}")
    scale = min(max_width / width, max_height / height, 1.0)
    if scale >= 1.0:
        return width, height
    return max(1, round(width * scale)), max(1, round(height * scale))


def _needs_alpha(img: Image.Image) -> bool:
    if (img.format or "").upper() not in _ALPHA_FORMATS:
        return False
    if img.mode in _ALPHA_MODES:
        return True
    return "transparency" in img.info


def _guess_media_type(raw: bytes, filename: str | None) -> str:
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            return guessed
    if raw.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if raw.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if raw[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if raw[:4] == b"RIFF" and raw[8:12] == b"WEBP":
        return "image/webp"
    return _FALLBACK_MEDIA_TYPE


def _compress(raw: bytes, max_width: int, max_height: int, quality: int) -> CoverArtifact:
    with BytesIO(raw) as source, Image.open(source) as img:
        img.load()
        keep_alpha = _needs_alpha(img)
        target = fit_within(img.width, img.height, max_width, max_height)
        frame = img.convert("RGBA")
        if frame.size != target:
            frame = frame.resize(target, resample=Image.Resampling.LANCZOS)
    if keep_alpha:
        canvas = Image.new("RGBA", target, (0, 0, 0, 0))
        canvas.paste(frame, (0, 0))
    else:
        canvas = Image.new("RGB", target, (255, 255, 255))
        canvas.paste(frame, (0, 0), frame)
    with BytesIO() as output:
        if keep_alpha:
            canvas.save(output, format="PNG", optimize=True)
            media_type = "image/png"
        else:
            canvas.save(output, format="JPEG", quality=quality, optimize=True)
            media_type = "image/jpeg"
        encoded = output.getvalue()
    return CoverArtifact(
        data_url=build_data_url(media_type, encoded),
        media_type=media_type,
        width=target[0],
        height=target[1],
        compressed=True,
    )


def process_cover(
    source: bytes | Path,
    *,
    filename: str | None = None,
    max_width: int = COVER_MAX_WIDTH,
    max_height: int = COVER_MAX_HEIGHT,
    quality: int = COVER_QUALITY,
) -> CoverArtifact:
    """Turn an arbitrary image into a bounded cover data URL.

    Images larger than ``max_width`` x ``max_height`` are scaled down
    uniformly and re-encoded as JPEG (PNG when the source carries
    transparency). When Pillow cannot decode or encode the image, the raw
    bytes are returned as an uncompressed data URL instead.
    """
    if isinstance(source, Path):
        raw = source.read_bytes()
        filename = filename or source.name
    else:
        raw = bytes(source)
    try:
        return _compress(raw, max_width, max_height, quality)
    # Pillow reports damaged chunks as SyntaxError and short headers as struct.error.
    except (
        OSError,
        ValueError,
        EOFError,
        SyntaxError,
        struct.error,
        Image.DecompressionBombError,
    ) as exc:
        debug_log(f"Cover compression failed for {filename or 'upload'}: {exc}")
    media_type = _guess_media_type(raw, filename)
    return CoverArtifact(
        data_url=build_data_url(media_type, raw),
        media_type=media_type,
        compressed=False,
    )


__all__ = [
    "COVER_MAX_HEIGHT",
    "COVER_MAX_WIDTH",
    "COVER_QUALITY",
    "CoverArtifact",
    "CoverFileInfo",
    "build_data_url",
    "fit_within",
    "parse_data_url",
    "process_cover",
]
