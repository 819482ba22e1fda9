"""Render pairing challenges as scannable QR images for the status page."""

from __future__ import annotations

import base64
import io

import qrcode
from qrcode.image.svg import SvgPathImage

_DATA_URI_PREFIX = "data:image/svg+xml;base64,"


def render_pairing_challenge(token: str) -> str:
    """Encode ``token`` as a QR code and return it as an SVG data URI."""
    if not token:
        raise ValueError("Pairing token must not be empty")

    qr = qrcode.QRCode(border=2, image_factory=SvgPathImage)
    qr.add_data(token)
    qr.make(fit=True)

    buffer = io.BytesIO()
    qr.make_image().save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"{_DATA_URI_PREFIX}{encoded}"
