"""
Evidence images (signature, site photo, canhoto photo) arrive as base64 data
URLs from the driver console. Photos are validated and shrunk before they
are stored with the proof; signatures keep their PNG transparency.
"""

import io
import re
import base64
import logging
from typing import Optional
from PIL import Image, UnidentifiedImageError
from services.errors import ValidationError

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r'^data:(?P<mime>image/[\w.+-]+);base64,(?P<data>.+)$', re.DOTALL)

# Phone cameras easily produce 4000px photos; 1600px is enough to read a canhoto
MAX_PHOTO_SIDE = 1600
JPEG_QUALITY = 80


def _decode(data_url: str, label: str) -> Image.Image:
    m = _DATA_URL.match(data_url.strip())
    if not m:
        raise ValidationError(f"{label}: formato de imagem inválido")
    try:
        raw = base64.b64decode(m.group('data'), validate=False)
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (ValueError, UnidentifiedImageError, OSError):
        raise ValidationError(f"{label}: imagem corrompida ou não suportada")
    return img


def _encode(img: Image.Image, fmt: str) -> str:
    buf = io.BytesIO()
    if fmt == 'JPEG':
        img.save(buf, format='JPEG', quality=JPEG_QUALITY, optimize=True)
        mime = 'image/jpeg'
    else:
        img.save(buf, format='PNG', optimize=True)
        mime = 'image/png'
    return f"data:{mime};base64,{base64.b64encode(buf.getvalue()).decode('ascii')}"


def normalize_photo(data_url: Optional[str], label: str = "Foto") -> Optional[str]:
    """Return the photo re-encoded as JPEG, longest side capped at MAX_PHOTO_SIDE."""
    if not data_url:
        return None
    img = _decode(data_url, label)
    original = img.size
    img = img.convert('RGB')
    img.thumbnail((MAX_PHOTO_SIDE, MAX_PHOTO_SIDE))
    if img.size != original:
        logger.info(f"{label} reduzida de {original} para {img.size}")
    return _encode(img, 'JPEG')


def normalize_signature(data_url: Optional[str]) -> Optional[str]:
    if not data_url:
        return None
    img = _decode(data_url, "Assinatura")
    return _encode(img.convert('RGBA'), 'PNG')
