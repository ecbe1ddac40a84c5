import re
import unicodedata
import xml.etree.ElementTree as ET
from typing import Dict, Iterable, List, Optional
from services.errors import ValidationError

NS = 'http://www.portalfiscal.inf.br/nfe'

# infCpl is kept only when it reads like a delivery address and carries none
# of the commercial/fiscal boilerplate that usually fills that field.
DEFAULT_ADDRESS_KEYWORDS = [
    'RUA', 'AV', 'AVENIDA', 'ALAMEDA', 'TRAVESSA', 'RODOVIA', 'ESTRADA',
    'PRACA', 'VIELA', 'LOTEAMENTO', 'CONDOMINIO', 'COND', 'BLOCO', 'APTO',
    'APARTAMENTO', 'CASA', 'LOTE', 'QUADRA', 'GALPAO', 'SALA', 'ANDAR',
    'PORTARIA', 'DOCA', 'FUNDOS', 'ESQUINA', 'KM', 'BAIRRO', 'CEP',
    'ENDERECO', 'LOCAL DE ENTREGA', 'ENTREGAR EM',
]
DEFAULT_NOISE_KEYWORDS = [
    'PEDIDO', 'PED', 'ORDEM DE COMPRA', 'OC', 'NF', 'NFE', 'NOTA FISCAL',
    'FATURA', 'DUPLICATA', 'BOLETO', 'VENCIMENTO', 'PAGAMENTO', 'PAGTO',
    'CONDICAO DE PAGAMENTO', 'PRAZO', 'PARCELA', 'ICMS', 'IPI', 'PIS',
    'COFINS', 'TRIBUTOS', 'LEI', 'DOCUMENTO EMITIDO', 'SIMPLES NACIONAL',
    'VALOR APROXIMADO', 'VENDEDOR', 'REPRESENTANTE',
]


def _find(el, path: str):
    """Namespace-agnostic find: 'dest/enderDest' matches with or without NS."""
    if el is None:
        return None
    parts = [f'{{*}}{p}' if p not in ('.', '') else p for p in path.split('/')]
    return el.find('/'.join(parts))


def _text(el, tag: str) -> str | None:
    child = _find(el, tag)
    if child is None or child.text is None:
        return None
    return child.text.strip() or None


def _float(val) -> float:
    try:
        return float(val) if val else 0.0
    except (ValueError, TypeError):
        return 0.0


def _normalize(text: str) -> str:
    """Uppercase, strip accents and punctuation, pad with spaces for word matching."""
    decomposed = unicodedata.normalize('NFKD', text.upper())
    ascii_only = ''.join(c for c in decomposed if not unicodedata.combining(c))
    words = re.sub(r'[^A-Z0-9]+', ' ', ascii_only).split()
    return f" {' '.join(words)} "


def _contains_any(normalized: str, keywords: Iterable[str]) -> bool:
    for kw in keywords:
        needle = _normalize(kw)
        if needle.strip() and needle in normalized:
            return True
    return False


def is_address_note(text: str | None,
                    address_keywords: Optional[Iterable[str]] = None,
                    noise_keywords: Optional[Iterable[str]] = None) -> bool:
    if not text or not text.strip():
        return False
    normalized = _normalize(text)
    if not _contains_any(normalized, address_keywords or DEFAULT_ADDRESS_KEYWORDS):
        return False
    return not _contains_any(normalized, noise_keywords or DEFAULT_NOISE_KEYWORDS)


def format_address(block) -> str:
    xLgr = _text(block, 'xLgr') or ''
    nro = _text(block, 'nro') or ''
    xCpl = _text(block, 'xCpl')
    xBairro = _text(block, 'xBairro') or ''
    xMun = _text(block, 'xMun') or ''
    uf = _text(block, 'UF') or ''
    cpl = f' ({xCpl})' if xCpl else ''
    return f'{xLgr}, {nro}{cpl} - {xBairro}, {xMun} - {uf}'


def _access_key(root) -> str | None:
    chave = _text(root, './/chNFe')
    if chave:
        return chave
    info = _find(root, './/infNFe')
    id_attr = info.get('Id', '') if info is not None else ''
    # Id is "NFe" + 44 digits
    if id_attr.startswith('NFe') and len(id_attr) > 3:
        return id_attr[3:]
    return None


def _items(root) -> List[Dict]:
    items: List[Dict] = []
    for index, det in enumerate(root.iterfind('.//{*}det'), start=1):
        prod = _find(det, 'prod')
        if prod is None:
            continue
        n_item = det.get('nItem', '')
        quantity = _float(_text(prod, 'qCom'))
        unit_value = _float(_text(prod, 'vUnCom'))
        line_total = _text(prod, 'vProd')
        items.append({
            'position': int(n_item) if n_item.isdigit() else index,
            'code': _text(prod, 'cProd'),
            'name': _text(prod, 'xProd'),
            'quantity': quantity,
            'unit': _text(prod, 'uCom'),
            'unit_value': unit_value,
            'value': _float(line_total) if line_total else round(quantity * unit_value, 2),
        })
    # sorted() is stable, so blocks sharing a position keep document order
    return sorted(items, key=lambda i: i['position'])


def parse_nfe_xml(xml: bytes | str,
                  address_keywords: Optional[Iterable[str]] = None,
                  noise_keywords: Optional[Iterable[str]] = None) -> Dict:
    """
    Extract the delivery-relevant fields of an NF-e document.

    The alternate delivery block (``entrega``) wins over the registered
    billing address (``dest/enderDest``). The result carries no id and no
    timestamp; the caller assigns both. Raises ValidationError when the
    document is malformed or misses dest, an address block, nNF or xNome.
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise ValidationError(f"XML mal formado: {e}")

    dest = _find(root, './/dest')
    if dest is None:
        raise ValidationError("XML inválido: Destinatário não encontrado")

    ender_dest = _find(dest, 'enderDest')
    entrega = _find(root, './/entrega')
    address_block = entrega if entrega is not None else ender_dest
    if address_block is None:
        raise ValidationError("XML inválido: Endereço de entrega não encontrado")

    ide = _find(root, './/ide')
    number = _text(ide, 'nNF')
    customer_name = _text(dest, 'xNome')
    if not number or not customer_name:
        raise ValidationError("XML incompleto: número da nota ou destinatário ausente")

    address = format_address(address_block)
    inf_cpl = _text(root, './/infAdic/infCpl')
    if is_address_note(inf_cpl, address_keywords, noise_keywords):
        address += f' || OBS/LOCAL: {inf_cpl.upper()}'

    total = _find(root, './/total')
    zip_code = _text(address_block, 'CEP') or _text(ender_dest, 'CEP') or ''

    return {
        'access_key': _access_key(root),
        'number': number,
        'series': _text(ide, 'serie') or '0',
        'customer_name': customer_name,
        'customer_doc': _text(dest, 'CNPJ') or _text(dest, 'CPF') or 'Não informado',
        'customer_address': address,
        'customer_zip': zip_code,
        'value': _float(_text(total, './/vNF')),
        'items': _items(root),
    }
