"""
NF-e import: single documents, drag-and-drop batches and access-key lookups.

Batches are processed in submission order. The first document carrying a
given access key is imported; later documents with that key (already stored
or accepted earlier in the same batch) are counted as duplicates.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple
import httpx
from sqlalchemy.orm import Session
from config import ADDRESS_KEYWORDS, NOISE_KEYWORDS
from models.models import Invoice
from services import invoice_service
from services.errors import ValidationError, DuplicateError
from services.nfe_lookup_service import fetch_nfe_data
from services.xml_service import parse_nfe_xml

logger = logging.getLogger(__name__)

SUCCESS = "success"
DUPLICATE = "duplicate"
ERROR = "error"


def _extract(content: bytes | str, address_keywords, noise_keywords) -> Dict:
    return parse_nfe_xml(content,
                         address_keywords=address_keywords or ADDRESS_KEYWORDS,
                         noise_keywords=noise_keywords or NOISE_KEYWORDS)


def import_document(db: Session, filename: str, content: bytes | str,
                    address_keywords: Optional[Iterable[str]] = None,
                    noise_keywords: Optional[Iterable[str]] = None) -> Invoice:
    """Import one XML file. Raises ValidationError or DuplicateError."""
    record = _extract(content, address_keywords, noise_keywords)
    invoice = invoice_service.create_invoice(db, record)
    logger.info(f"{filename}: NF {invoice.number} importada")
    return invoice


def import_batch(db: Session, documents: Iterable[Tuple[str, bytes | str]],
                 address_keywords: Optional[Iterable[str]] = None,
                 noise_keywords: Optional[Iterable[str]] = None) -> Dict:
    documents = list(documents)
    summary = {"total": len(documents), "success": 0, "duplicates": 0, "errors": 0}
    details: List[Dict] = []

    parsed: List[Tuple[str, Dict | None, str | None]] = []
    for filename, content in documents:
        try:
            parsed.append((filename, _extract(content, address_keywords, noise_keywords), None))
        except ValidationError as e:
            logger.warning(f"{filename}: rejeitado: {e.message}")
            parsed.append((filename, None, e.message))

    seen = invoice_service.existing_access_keys(
        db, [record["access_key"] for _, record, _ in parsed if record])

    for filename, record, error in parsed:
        if record is None:
            summary["errors"] += 1
            details.append({"filename": filename, "status": ERROR, "message": error,
                            "invoice_id": None, "access_key": None, "number": None})
            continue

        key = record["access_key"]
        if key and key in seen:
            summary["duplicates"] += 1
            details.append({"filename": filename, "status": DUPLICATE,
                            "message": f"A nota fiscal {record['number']} já existe.",
                            "invoice_id": None, "access_key": key, "number": record["number"]})
            continue

        try:
            invoice = invoice_service.create_invoice(db, record)
        except DuplicateError as e:
            summary["duplicates"] += 1
            details.append({"filename": filename, "status": DUPLICATE, "message": e.message,
                            "invoice_id": None, "access_key": key, "number": record["number"]})
            continue

        seen.add(invoice.access_key)
        summary["success"] += 1
        details.append({"filename": filename, "status": SUCCESS,
                        "message": f"Nota Fiscal {invoice.number} importada com sucesso!",
                        "invoice_id": invoice.id, "access_key": invoice.access_key,
                        "number": invoice.number})

    summary["details"] = details
    logger.info(f"Lote importado: {summary['success']} ok, {summary['duplicates']} duplicadas, "
                f"{summary['errors']} com erro (total {summary['total']})")
    return summary


async def import_by_access_key(db: Session, access_key: str,
                               client: httpx.AsyncClient | None = None) -> Invoice:
    """Fetch the invoice from the public lookup and store it. Raises DuplicateError for known keys."""
    record = await fetch_nfe_data(access_key, client=client)
    if invoice_service.existing_access_keys(db, [record["access_key"]]):
        raise DuplicateError("Esta Nota Fiscal já está cadastrada no sistema.", record["access_key"])
    return invoice_service.create_invoice(db, record)
