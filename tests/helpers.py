"""Test helpers shared across modules."""

import base64
from datetime import datetime, timedelta, timezone
from io import BytesIO

from PIL import Image


class FakeClock:
    """Deterministic clock: each call advances one second."""

    def __init__(self, start=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def png_data_url(width=40, height=20, color=(0, 0, 0, 255), fmt="PNG"):
    """Small solid image as a data URL (PNG or JPEG)."""
    if fmt == "PNG":
        img, mime = Image.new("RGBA", (width, height), color), "image/png"
    else:
        img, mime = Image.new("RGB", (width, height), color[:3]), "image/jpeg"
    buf = BytesIO()
    img.save(buf, format=fmt)
    return f"data:{mime};base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def make_document(coord, signer_specs, **overrides):
    """Create a two-page 800x1000 document owned by hr@example.com."""
    kwargs = dict(
        name="Employment Contract.pdf",
        owner="hr@example.com",
        signers=signer_specs,
        page_count=2,
        page_width=800,
        page_height=1000,
        size=2456789,
    )
    kwargs.update(overrides)
    return coord.create_document(**kwargs).unwrap()
