import base64
import logging
from io import BytesIO
from urllib.parse import quote

import qrcode
from qrcode.constants import ERROR_CORRECT_H
from qrcode.exceptions import DataOverflowError
from qrcode.image.svg import SvgPathImage

logger = logging.getLogger("shortdrop.qr")


def absolute_url(base: str, url: str) -> str:
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"{base.rstrip('/')}/{url.lstrip('/')}"


def _build(data: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=1, box_size=10, border=4,
        error_correction=ERROR_CORRECT_H
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr


def generate_qr_svg(data: str) -> str:
    """Render ``data`` as an SVG document; empty string if it cannot be encoded."""
    try:
        img = _build(data).make_image(image_factory=SvgPathImage)
    except (DataOverflowError, ValueError, TypeError):
        logger.exception("Could not render QR code for %.80r", data)
        return ""
    return img.to_string(encoding="unicode")


def svg_data_url(svg: str) -> str | None:
    if not svg:
        return None
    return "data:image/svg+xml;utf8," + quote(svg)


def generate_qr_base64(data: str) -> str:
    try:
        img = _build(data).make_image(fill_color="black", back_color="white")
    except (DataOverflowError, ValueError, TypeError):
        logger.exception("Could not render QR code for %.80r", data)
        return ""

    buf = BytesIO()
    img.save(buf)
    return base64.b64encode(buf.getvalue()).decode()
