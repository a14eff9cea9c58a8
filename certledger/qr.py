import io
import json
import base64

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from certledger.canonical import key_to_hex, parse_key
from certledger.errors import InvalidQRPayload

PAYLOAD_TYPE = "certificate"
PAYLOAD_VERSION = "1.0"


def encode_payload(key) -> str:
    return json.dumps({"type": PAYLOAD_TYPE, "hash": key_to_hex(parse_key(key)), "version": PAYLOAD_VERSION})


def decode_payload(qr_data) -> bytes:
    """Extracts the certificate key from scanned QR text."""
    try:
        parsed = json.loads(qr_data)
    except (TypeError, ValueError):
        raise InvalidQRPayload()
    if not isinstance(parsed, dict) or parsed.get("type") != PAYLOAD_TYPE or not parsed.get("hash"):
        raise InvalidQRPayload()
    return parse_key(parsed["hash"])


def make_qr_png(key) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=2)
    qr.add_data(encode_payload(key))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def make_qr_data_url(key) -> str:
    return "data:image/png;base64," + base64.b64encode(make_qr_png(key)).decode("utf-8")
