"""
DANFE barcode / NFC-e QR code reading.

The DANFE carries the 44-digit access key as a CODE-128 barcode; NFC-e
receipts carry it inside the QR code URL. Either way the result feeds the
access-key lookup.
"""

import re
import logging
import numpy as np
import cv2
from typing import List, Optional

logger = logging.getLogger(__name__)


# ── Detection ─────────────────────────────────────────────────────────────────

def _decode_qr_opencv(img: np.ndarray) -> List[str]:
    detector = cv2.QRCodeDetector()
    try:
        data, _, _ = detector.detectAndDecode(img)
        if data:
            return [data]
    except cv2.error as e:
        logger.debug(f"OpenCV QR failed: {e}")
    return []


def _decode_barcode_opencv(img: np.ndarray) -> List[str]:
    """1D barcodes (CODE-128 on the DANFE) via OpenCV's barcode module."""
    try:
        detector = cv2.barcode.BarcodeDetector()
        result = detector.detectAndDecode(img)
    except (AttributeError, cv2.error) as e:
        logger.debug(f"OpenCV barcode failed: {e}")
        return []
    # OpenCV 4.8+: (text, points, straight); contrib 4.5-4.7: (ok, infos, types, points)
    decoded = result[1] if isinstance(result[0], bool) else result[0]
    if isinstance(decoded, str):
        decoded = [decoded]
    return [d for d in (decoded or []) if d]


def _decode_with_pyzbar(img: np.ndarray) -> List[str]:
    """Try pyzbar; more robust for angled/low-quality photos."""
    try:
        from pyzbar import pyzbar
        from PIL import Image
        pil = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB) if len(img.shape) == 3 else img)
        results = pyzbar.decode(pil)
        return [r.data.decode('utf-8', errors='replace') for r in results if r.data]
    except ImportError:
        return []
    except Exception as e:
        logger.debug(f"pyzbar failed: {e}")
        return []


def _decode_all(img: np.ndarray) -> List[str]:
    return _decode_barcode_opencv(img) + _decode_qr_opencv(img) + _decode_with_pyzbar(img)


def read_codes(image_bytes: bytes) -> List[str]:
    """
    Decode every barcode/QR code in an image. Retries on a binarized and an
    upscaled copy when the original yields nothing.
    """
    nparr = np.frombuffer(image_bytes, np.uint8)
    img = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if img is None:
        return []

    results = _decode_all(img)

    if not results:
        gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        results = _decode_all(binary)

    if not results:
        h, w = img.shape[:2]
        scale = max(1.0, 1500 / max(h, w))
        if scale > 1.1:
            upscaled = cv2.resize(img, None, fx=scale, fy=scale, interpolation=cv2.INTER_CUBIC)
            results = _decode_all(upscaled)

    unique = list(dict.fromkeys(r for r in results if r))
    logger.info(f"Códigos encontrados na imagem: {len(unique)}")
    return unique


# ── Payload parsing ───────────────────────────────────────────────────────────

def access_key_from_payload(payload: str) -> Optional[str]:
    """
    Examples:
      35240112345678000199550010000012341000012345           (DANFE barcode)
      https://www.sefaz.rs.gov.br/NFCE/NFCE-COM.aspx?chave=43210...&nVerificador=...
      https://nfce.fazenda.mg.gov.br/portalnfce/sistema/qrcode.xhtml?p=31210...|2|1|1|HASH
    """
    if not payload:
        return None
    m = re.search(r'chave=(\d{44})', payload, re.IGNORECASE)
    if m:
        return m.group(1)
    m = re.search(r'[?&]p=(\d{44})', payload, re.IGNORECASE)
    if m:
        return m.group(1)
    digits = re.sub(r'\D', '', payload)
    if len(digits) == 44:
        return digits
    m = re.search(r'(?<!\d)\d{44}(?!\d)', re.sub(r'\s', '', payload))
    return m.group() if m else None


def scan_access_key(image_bytes: bytes) -> Optional[str]:
    for payload in read_codes(image_bytes):
        key = access_key_from_payload(payload)
        if key:
            logger.info(f"Chave lida do código: {key[:10]}...")
            return key
    return None
