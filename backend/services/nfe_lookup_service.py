import re
import httpx
import logging
from config import NFE_LOOKUP_URL, NFE_LOOKUP_TIMEOUT
from services.errors import ValidationError, RemoteOperationError

logger = logging.getLogger(__name__)

MISSING_ADDRESS = "Endereço não retornado (Preencher na entrega)"
UNKNOWN_CUSTOMER = "Consumidor Final / Não Identificado"


def clean_access_key(raw: str) -> str:
    """Keep only digits; raise ValidationError unless 44 remain."""
    key = re.sub(r'\D', '', raw or '')
    if len(key) != 44:
        raise ValidationError("Chave inválida. Deve ter 44 dígitos.")
    return key


def _map_response(key: str, data: dict) -> dict:
    dest = data.get("destinatario") or {}
    endereco = dest.get("endereco") or {}
    if endereco:
        address = (f"{endereco.get('logradouro', '')}, {endereco.get('numero', '')}"
                   f" - {endereco.get('bairro', '')}")
    else:
        address = MISSING_ADDRESS
    try:
        value = float(data.get("valor_total") or 0)
    except (TypeError, ValueError):
        value = 0.0
    return {
        "access_key": key,
        # positions 22-24 hold the series and 25-33 the number inside the key
        "number": str(data.get("numero") or key[25:34]),
        "series": str(data.get("serie") or key[22:25]),
        "customer_name": dest.get("nome") or UNKNOWN_CUSTOMER,
        "customer_doc": dest.get("cpf") or dest.get("cnpj") or "",
        "customer_address": address,
        "customer_zip": endereco.get("cep", ""),
        "value": value,
        "items": [],
    }


async def fetch_nfe_data(access_key: str, client: httpx.AsyncClient | None = None) -> dict:
    """Query the public NF-e lookup by access key and return an invoice record."""
    key = clean_access_key(access_key)
    url = f"{NFE_LOOKUP_URL.rstrip('/')}/{key}"
    logger.info(f"Consultando NF-e na base pública: {key[:10]}...")
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=NFE_LOOKUP_TIMEOUT) as own_client:
                resp = await own_client.get(url, follow_redirects=True)
        else:
            resp = await client.get(url, follow_redirects=True)
    except httpx.TimeoutException:
        logger.warning(f"Lookup timeout, chave {key[:10]}...")
        raise RemoteOperationError("Tempo esgotado ao consultar a base pública. Tente a importação via XML.")
    except httpx.HTTPError as e:
        logger.error(f"Lookup error: {e}")
        raise RemoteOperationError("Não foi possível buscar os dados automaticamente. Tente a importação via XML.")

    if resp.status_code != 200:
        logger.warning(f"Lookup returned {resp.status_code} for chave {key[:10]}...")
        raise RemoteOperationError("Nota não encontrada na base pública ou API indisponível.")
    try:
        payload = resp.json()
    except ValueError:
        raise RemoteOperationError("Resposta inválida da base pública.")
    return _map_response(key, payload)
