"""
QR challenge handling.
Extracts the challenge from a ``qr`` response, decodes PNG challenges to
their token text and renders the token on the terminal.
"""

import base64
import io
import logging
import os
import sys
from typing import Optional, TextIO

import qrcode
import zxingcpp
from PIL import Image

logger = logging.getLogger(__name__)

PNG_BASE64_PREFIX = "iVBORw0KGgo"
FALLBACK_HTML_NAME = "qr_code.html"

_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<title>QR Code</title>
<style>
body {{ display: flex; justify-content: center; align-items: center; height: 100vh; margin: 0; background: white; }}
img {{ max-width: 300px; }}
</style>
</head>
<body>
<img src="data:image/png;base64,{data}" alt="QR Code">
</body>
</html>
"""


def looks_like_png(value: Optional[str]) -> bool:
    return bool(value) and PNG_BASE64_PREFIX in value[:64]


def extract_qr_challenge(response) -> Optional[str]:
    """
    Return the challenge carried by a ``qr`` response, or None.

    Accepts ``{"qr": "..."}`` and ``{"type": "qrCode", "message": "<png>"}``.
    """
    if not isinstance(response, dict):
        return None
    qr = response.get("qr")
    if isinstance(qr, str) and qr:
        return qr
    if response.get("type") == "qrCode":
        message = response.get("message")
        if isinstance(message, str) and message:
            return message
    return None


def decode_qr_png(png_base64: str) -> Optional[str]:
    """Decode a base64 PNG QR image to its token text. None when unreadable."""
    try:
        raw = base64.b64decode(png_base64)
        with Image.open(io.BytesIO(raw)) as img:
            results = zxingcpp.read_barcodes(img.convert("L"))
    except (ValueError, OSError) as e:
        logger.warning(f"QR image could not be read: {e}")
        return None
    for result in results:
        if result.text:
            return result.text
    return None


def render_qr_text(text: str) -> str:
    """Render a token as a compact block-character QR code."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(text)
    qr.make(fit=True)
    buf = io.StringIO()
    qr.print_ascii(out=buf, invert=True)
    return buf.getvalue()


class TerminalQrDisplay:
    """
    Shows QR challenges to the user on stderr (stdout is the host channel).

    PNG challenges that cannot be decoded are written to an HTML page the
    user can open in a browser.
    """

    def __init__(self, out: Optional[TextIO] = None, fallback_dir: Optional[str] = None):
        self.out = out or sys.stderr
        self.fallback_dir = fallback_dir or os.getcwd()

    def show(self, challenge: str) -> Optional[str]:
        """Display a challenge. Returns the token text when one was rendered."""
        if looks_like_png(challenge):
            logger.debug("Processing base64 QR image data...")
            token = decode_qr_png(challenge)
            if token is None:
                self._write_fallback(challenge)
                return None
        else:
            logger.debug(f"Processing direct QR text data ({len(challenge)} chars)")
            token = challenge

        self.out.write("\n=== SCAN THIS QR CODE WITH YOUR PHONE ===\n")
        self.out.write(render_qr_text(token))
        self.out.write("=== QR CODE ABOVE ===\n\n")
        self.out.flush()
        return token

    def _write_fallback(self, png_base64: str):
        path = os.path.join(self.fallback_dir, FALLBACK_HTML_NAME)
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(_HTML_TEMPLATE.format(data=png_base64))
        except OSError as e:
            logger.error(f"Failed to create HTML QR file: {e}")
            self.out.write("QR code received as image data but cannot be displayed.\n")
            return
        logger.info(f"QR code saved to {path}")
        self.out.write(f"\n=== QR CODE SAVED TO: {path} ===\n")
        self.out.write("Open this file in your browser to scan the QR code\n\n")
        self.out.flush()
