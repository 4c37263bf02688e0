"""Рендер QR-кода PIX в PNG (base64)"""
import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M


def render_png_base64(payload: str) -> str:
    """Кодирует строку BR Code в QR и возвращает PNG в base64"""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    image = qr.make_image()

    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")
