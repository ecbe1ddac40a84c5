import asyncio
import httpx
import pytest
from models.models import Invoice, DeliveryStatus
from services import import_service
from services.errors import DuplicateError, ValidationError

OTHER_KEY = "35240112345678000199550010000099991000099999"


def test_import_document_creates_pending_invoice(db, nfe_xml):
    invoice = import_service.import_document(db, "nota.xml", nfe_xml())

    assert invoice.id is not None
    assert invoice.status == DeliveryStatus.PENDING
    assert invoice.driver_id is None
    assert invoice.vehicle_id is None
    assert [i.position for i in invoice.items] == [1, 2, 3]


def test_import_document_rejects_known_key(db, nfe_xml):
    import_service.import_document(db, "nota.xml", nfe_xml())
    with pytest.raises(DuplicateError) as exc:
        import_service.import_document(db, "copia.xml", nfe_xml())
    assert exc.value.access_key == "35240112345678000199550010000012341000012345"
    assert db.query(Invoice).count() == 1


def test_import_document_invalid_xml(db):
    with pytest.raises(ValidationError):
        import_service.import_document(db, "ruim.xml", b"not xml")


def test_batch_same_key_twice_keeps_first(db, nfe_xml):
    summary = import_service.import_batch(db, [
        ("a.xml", nfe_xml(number="1")),
        ("b.xml", nfe_xml(number="2")),
    ])

    assert summary["total"] == 2
    assert summary["success"] == 1
    assert summary["duplicates"] == 1
    assert summary["errors"] == 0
    assert [d["status"] for d in summary["details"]] == ["success", "duplicate"]
    assert db.query(Invoice).one().number == "1"


def test_batch_mixed_results(db, nfe_xml):
    import_service.import_document(db, "ja_existe.xml", nfe_xml())

    summary = import_service.import_batch(db, [
        ("nova.xml", nfe_xml(key=OTHER_KEY, number="9999")),
        ("ja_existe.xml", nfe_xml()),
        ("quebrado.xml", b"<nfeProc>"),
        ("sem_dest.xml", nfe_xml(key="1" * 44, with_dest=False)),
    ])

    assert summary["total"] == 4
    assert summary["success"] == 1
    assert summary["duplicates"] == 1
    assert summary["errors"] == 2
    assert [d["filename"] for d in summary["details"]] == [
        "nova.xml", "ja_existe.xml", "quebrado.xml", "sem_dest.xml"]
    assert db.query(Invoice).count() == 2


def test_batch_error_does_not_block_later_documents(db, nfe_xml):
    summary = import_service.import_batch(db, [
        ("quebrado.xml", b"<x"),
        ("boa.xml", nfe_xml()),
    ])
    assert summary["errors"] == 1
    assert summary["success"] == 1


def test_documents_without_key_get_distinct_placeholders(db, nfe_xml):
    def keyless(number):
        xml = nfe_xml(number=number)
        xml = xml.replace(b'Id="NFe35240112345678000199550010000012341000012345"', b'Id=""')
        return xml.replace(b"<chNFe>35240112345678000199550010000012341000012345</chNFe>", b"")

    summary = import_service.import_batch(db, [("x.xml", keyless("1")), ("y.xml", keyless("2"))])

    assert summary["success"] == 2
    keys = [inv.access_key for inv in db.query(Invoice).all()]
    assert all(k.startswith("GEN") for k in keys)
    assert len(set(keys)) == 2


def _lookup_transport(payload, status=200):
    def handler(request):
        return httpx.Response(status, json=payload)
    return httpx.MockTransport(handler)


def test_import_by_access_key(db):
    payload = {"numero": "555", "serie": "2", "valor_total": "99.90",
               "destinatario": {"nome": "Padaria Central", "cnpj": "11222333000181",
                                "endereco": {"logradouro": "Rua Um", "numero": "10",
                                             "bairro": "Centro", "cep": "01001000"}}}

    async def run():
        async with httpx.AsyncClient(transport=_lookup_transport(payload)) as client:
            return await import_service.import_by_access_key(db, OTHER_KEY, client=client)

    invoice = asyncio.run(run())
    assert invoice.number == "555"
    assert invoice.customer_name == "Padaria Central"
    assert invoice.value == pytest.approx(99.90)
    assert invoice.status == DeliveryStatus.PENDING


def test_import_by_access_key_duplicate(db, nfe_xml):
    import_service.import_document(db, "nota.xml", nfe_xml(key=OTHER_KEY))

    async def run():
        async with httpx.AsyncClient(transport=_lookup_transport({})) as client:
            return await import_service.import_by_access_key(db, OTHER_KEY, client=client)

    with pytest.raises(DuplicateError):
        asyncio.run(run())
