"""
QR challenge tests: extraction, PNG decoding and terminal display.
"""
import base64
import io
import os
import tempfile
import unittest
from unittest.mock import patch

import qrcode

from green_bridge.qr import (
    TerminalQrDisplay,
    decode_qr_png,
    extract_qr_challenge,
    looks_like_png,
    render_qr_text,
)


def qr_png_base64(text):
    buf = io.BytesIO()
    qrcode.make(text).save(buf)
    return base64.b64encode(buf.getvalue()).decode("ascii")


class TestExtract(unittest.TestCase):
    def test_shapes(self):
        self.assertEqual(extract_qr_challenge({"qr": "2@abc"}), "2@abc")
        self.assertEqual(
            extract_qr_challenge({"type": "qrCode", "message": "iVBORw0KGgoXYZ"}), "iVBORw0KGgoXYZ"
        )
        self.assertIsNone(extract_qr_challenge({"type": "alreadyLogged", "message": "ok"}))
        self.assertIsNone(extract_qr_challenge({}))
        self.assertIsNone(extract_qr_challenge(None))

    def test_looks_like_png(self):
        self.assertTrue(looks_like_png("iVBORw0KGgoAAAANSUhEUg"))
        self.assertFalse(looks_like_png("2@abcdef"))
        self.assertFalse(looks_like_png(None))


class TestDecodeAndRender(unittest.TestCase):
    def test_png_round_trip(self):
        self.assertEqual(decode_qr_png(qr_png_base64("2@hello-token")), "2@hello-token")

    def test_unreadable_png(self):
        self.assertIsNone(decode_qr_png("iVBORw0KGgo-not-really-png"))
        self.assertIsNone(decode_qr_png("%%%"))

    def test_render_uses_block_characters(self):
        rendered = render_qr_text("2@hello")
        self.assertGreater(len(rendered.splitlines()), 10)
        self.assertTrue(any(ch in rendered for ch in "█▀▄"))


class TestTerminalQrDisplay(unittest.TestCase):
    def setUp(self):
        self.out = io.StringIO()
        self.tmp = tempfile.TemporaryDirectory()
        self.display = TerminalQrDisplay(out=self.out, fallback_dir=self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_text_challenge(self):
        self.assertEqual(self.display.show("2@direct"), "2@direct")
        self.assertIn("SCAN THIS QR CODE", self.out.getvalue())

    def test_png_challenge(self):
        self.assertEqual(self.display.show(qr_png_base64("2@from-png")), "2@from-png")

    def test_undecodable_png_written_to_html(self):
        challenge = "iVBORw0KGgoBROKEN"
        with patch("green_bridge.qr.decode_qr_png", return_value=None):
            self.assertIsNone(self.display.show(challenge))

        path = os.path.join(self.tmp.name, "qr_code.html")
        with open(path, encoding="utf-8") as f:
            self.assertIn(f"data:image/png;base64,{challenge}", f.read())
        self.assertIn(path, self.out.getvalue())


if __name__ == "__main__":
    unittest.main()
