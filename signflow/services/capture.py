"""Signature capture normalization.

Turns a drawn stroke image, typed text or uploaded picture into the one
canonical form a field stores: a base64 PNG data URL no larger than the
canonical mark box. Pure transform; Pillow images live only inside each call.
"""
from __future__ import annotations

import base64
import binascii
import enum
import re
from dataclasses import dataclass, field
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from signflow.services.entities import CaptureMethod
from signflow.services.exceptions import EmptyInput, UnsupportedFormat, UploadTooLarge
from signflow.services.geometry import CANONICAL_MARK_HEIGHT, CANONICAL_MARK_WIDTH, fit_within

ALLOWED_MIME_TYPES = frozenset({"image/png", "image/jpeg"})
DEFAULT_MAX_UPLOAD_BYTES = 2 * 1024 * 1024
DEFAULT_MAX_DRAWN_BYTES = 2 * 1024 * 1024
# Decoded size cap; a tiny compressed payload can expand to gigabytes
DEFAULT_MAX_IMAGE_PIXELS = 4096 * 4096

_PIL_FORMAT_TO_MIME = {"PNG": "image/png", "JPEG": "image/jpeg"}
_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)
_MAX_TEXT_LEN = 255
_TEXT_PADDING = 16
_MIN_FONT_SIZE = 10


class FontStyle(str, enum.Enum):
    cursive = "cursive"
    script = "script"
    elegant = "elegant"


# style -> (font size, horizontal slant)
_FONT_STYLES = {
    FontStyle.cursive: (34, 0.25),
    FontStyle.script: (30, 0.4),
    FontStyle.elegant: (36, 0.0),
}


@dataclass(frozen=True)
class Capture:
    """Raw signer input before normalization."""
    method: CaptureMethod
    text: str | None = None
    font: FontStyle = FontStyle.cursive
    image_data: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class CaptureResult:
    signature_type: CaptureMethod
    signature_image: str
    signature_text: str | None = None


@dataclass(frozen=True)
class CapturePolicy:
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    max_drawn_bytes: int = DEFAULT_MAX_DRAWN_BYTES
    max_image_pixels: int = DEFAULT_MAX_IMAGE_PIXELS
    allowed_mime_types: frozenset[str] = field(default=ALLOWED_MIME_TYPES)


def _png_data_url(img: Image.Image) -> str:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _fit_font(draw: ImageDraw.ImageDraw, text: str, size: int) -> ImageFont.FreeTypeFont:
    """Shrink the font until the text fits the canonical width."""
    max_width = CANONICAL_MARK_WIDTH - 2 * _TEXT_PADDING
    font = ImageFont.load_default(size=size)
    while size > _MIN_FONT_SIZE and draw.textlength(text, font=font) > max_width:
        size -= 2
        font = ImageFont.load_default(size=size)
    return font


def render_typed_signature(text: str, font: FontStyle = FontStyle.cursive) -> str:
    """Render text into a CANONICAL_MARK_WIDTH x CANONICAL_MARK_HEIGHT transparent PNG.

    Identical text and font always give byte-identical output.
    """
    size, slant = _FONT_STYLES[FontStyle(font)]
    img = Image.new("RGBA", (CANONICAL_MARK_WIDTH, CANONICAL_MARK_HEIGHT), (255, 255, 255, 0))
    draw = ImageDraw.Draw(img)
    pil_font = _fit_font(draw, text, size)
    draw.text(
        (CANONICAL_MARK_WIDTH / 2, CANONICAL_MARK_HEIGHT / 2),
        text,
        font=pil_font,
        fill=(0, 0, 0, 255),
        anchor="mm",
    )
    if slant:
        # Shear around the vertical centre so the text stays in the box
        img = img.transform(
            img.size,
            Image.Transform.AFFINE,
            (1, slant, -slant * CANONICAL_MARK_HEIGHT / 2, 0, 1, 0),
            resample=Image.Resampling.BICUBIC,
        )
    return _png_data_url(img)


def decode_image_payload(image_data: str, mime_type: str | None = None) -> tuple[str, bytes]:
    """Split a data URL (or bare base64 plus declared MIME type) into (mime, raw bytes)."""
    payload = image_data.strip()
    match = _DATA_URL.match(payload)
    if match:
        mime_type = match.group("mime")
        payload = match.group("data")
    mime = (mime_type or "").strip().lower()
    if not mime:
        raise UnsupportedFormat("Image MIME type is missing")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise UnsupportedFormat("Image data is not valid base64")
    return mime, raw


def _canonical_image(raw: bytes, declared_mime: str, max_pixels: int = DEFAULT_MAX_IMAGE_PIXELS) -> str:
    try:
        with Image.open(BytesIO(raw)) as src:
            width, height = src.size
            if width * height > max_pixels:
                raise UploadTooLarge(
                    f"Image is {width}x{height} pixels; limit is {max_pixels} pixels",
                    width=width,
                    height=height,
                )
            actual_mime = _PIL_FORMAT_TO_MIME.get(src.format or "")
            if actual_mime is None or actual_mime != declared_mime:
                raise UnsupportedFormat(
                    f"Image content is {src.format or 'unknown'}, declared {declared_mime}",
                    declared=declared_mime,
                )
            src.load()
            img = src.convert("RGBA")
    except Image.DecompressionBombError:
        raise UploadTooLarge("Image dimensions exceed the decoder limit", declared=declared_mime)
    except (UnidentifiedImageError, OSError):
        raise UnsupportedFormat("Image data could not be decoded", declared=declared_mime)
    target = fit_within(*img.size)
    if target != img.size:
        img = img.resize(target, Image.Resampling.LANCZOS)
    return _png_data_url(img)


def normalize_capture(capture: Capture, policy: CapturePolicy | None = None) -> CaptureResult:
    """Validate one capture and return its canonical representation."""
    policy = policy or CapturePolicy()
    method = CaptureMethod(capture.method)

    if method == CaptureMethod.typed:
        text = (capture.text or "").strip()
        if not text:
            raise EmptyInput("Typed signature text is empty")
        text = text[:_MAX_TEXT_LEN]
        return CaptureResult(
            signature_type=method,
            signature_image=render_typed_signature(text, capture.font),
            signature_text=text,
        )

    if not (capture.image_data or "").strip():
        raise EmptyInput(f"{method.value.capitalize()} signature has no image data")
    mime, raw = decode_image_payload(capture.image_data, capture.mime_type)
    if not raw:
        raise EmptyInput(f"{method.value.capitalize()} signature has no image data")
    if mime not in policy.allowed_mime_types:
        raise UnsupportedFormat(f"Unsupported image type: {mime}", mime_type=mime)
    limit = policy.max_upload_bytes if method == CaptureMethod.uploaded else policy.max_drawn_bytes
    if len(raw) > limit:
        raise UploadTooLarge(
            f"{method.value.capitalize()} image is {len(raw)} bytes; limit is {limit}",
            size=len(raw),
            limit=limit,
        )
    return CaptureResult(
        signature_type=method,
        signature_image=_canonical_image(raw, mime, policy.max_image_pixels),
    )
