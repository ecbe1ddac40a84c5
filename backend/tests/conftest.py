"""
Pytest fixtures for EntregaCerta backend tests.

Provides an in-memory database, an API test client wired to it, auth headers
and small builders for NF-e documents and invoices.
"""

import os

# Keep the module-level engine in memory; must run before app imports
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import ADMIN_PASSWORD
from db import Base, get_db
from main import app
from models.models import DeliveryStatus
from services import fleet_service, invoice_service

NFE_NS = "http://www.portalfiscal.inf.br/nfe"
SAMPLE_KEY = "35240112345678000199550010000012341000012345"


@pytest.fixture(scope='function')
def engine():
    """Fresh in-memory database shared by every connection of one test."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False},
                           poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope='function')
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope='function')
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope='function')
def client(session_factory):
    """API client whose requests use the test database."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope='function')
def admin_headers(client):
    resp = client.post("/api/auth/admin", json={"password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture(scope='function')
def driver_headers(client):
    """Returns a function issuing a token for the given driver id."""
    def _headers(driver_id, password=""):
        resp = client.post("/api/auth/driver", json={"driver_id": driver_id, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return _headers


@pytest.fixture(scope='function')
def driver(db):
    """Driver without password (any input logs in)."""
    return fleet_service.create_driver(db, "João Motorista")


@pytest.fixture(scope='function')
def other_driver(db):
    return fleet_service.create_driver(db, "Maria Motorista", password="segredo")


@pytest.fixture(scope='function')
def vehicle(db):
    return fleet_service.create_vehicle(db, "abc1d23", "Fiorino")


def build_nfe_xml(key=SAMPLE_KEY, number="1234", customer="Mercado Boa Vista LTDA",
                  entrega=False, inf_cpl=None, items=((10.0, 1), (20.0, 2), (30.0, 3)),
                  total=None, with_dest=True, namespaced=True):
    """Minimal but structurally real NF-e (nfeProc) document."""
    dets = "".join(
        f'<det nItem="{pos}"><prod><cProd>P{pos:03d}</cProd><xProd>Produto {pos}</xProd>'
        f'<uCom>UN</uCom><qCom>1.0000</qCom><vUnCom>{value:.2f}</vUnCom>'
        f'<vProd>{value:.2f}</vProd></prod></det>'
        for value, pos in items
    )
    if total is None:
        total = sum(value for value, _ in items)
    dest = (
        f'<dest><CNPJ>11222333000181</CNPJ><xNome>{customer}</xNome>'
        '<enderDest><xLgr>Rua das Flores</xLgr><nro>100</nro><xCpl>Sala 2</xCpl>'
        '<xBairro>Centro</xBairro><xMun>Campinas</xMun><UF>SP</UF><CEP>13010000</CEP>'
        '</enderDest></dest>'
    ) if with_dest else ''
    entrega_block = (
        '<entrega><CNPJ>11222333000181</CNPJ><xLgr>Avenida Brasil</xLgr><nro>2000</nro>'
        '<xBairro>Jardim</xBairro><xMun>Sumaré</xMun><UF>SP</UF><CEP>13170000</CEP></entrega>'
    ) if entrega else ''
    inf_adic = f'<infAdic><infCpl>{inf_cpl}</infCpl></infAdic>' if inf_cpl else ''
    xmlns = f' xmlns="{NFE_NS}"' if namespaced else ''
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<nfeProc{xmlns} versao="4.00"><NFe><infNFe Id="NFe{key}" versao="4.00">'
        f'<ide><serie>1</serie><nNF>{number}</nNF></ide>'
        f'{dest}{entrega_block}{dets}'
        f'<total><ICMSTot><vNF>{total:.2f}</vNF></ICMSTot></total>'
        f'{inf_adic}</infNFe></NFe>'
        f'<protNFe><infProt><chNFe>{key}</chNFe></infProt></protNFe></nfeProc>'
    ).encode("utf-8")


@pytest.fixture
def nfe_xml():
    return build_nfe_xml


@pytest.fixture(scope='function')
def make_invoice(db):
    """Create a stored invoice, optionally assigned and in a given status."""
    counter = {"n": 0}

    def _make(status=DeliveryStatus.PENDING, driver_id=None, vehicle_id=None,
              items=((10.0, 1), (20.0, 2), (30.0, 3)), value=None):
        counter["n"] += 1
        n = counter["n"]
        record = {
            "access_key": f"{n:044d}",
            "number": str(1000 + n),
            "series": "1",
            "customer_name": f"Cliente {n}",
            "customer_doc": "11222333000181",
            "customer_address": "Rua das Flores, 100 - Centro, Campinas - SP",
            "customer_zip": "13010000",
            "value": value if value is not None else sum(v for v, _ in items),
            "items": [{"position": pos, "code": f"P{pos:03d}", "name": f"Produto {pos}",
                       "quantity": 1.0, "unit": "UN", "unit_value": v, "value": v}
                      for v, pos in items],
        }
        invoice = invoice_service.create_invoice(db, record)
        invoice.driver_id = driver_id
        invoice.vehicle_id = vehicle_id
        invoice.status = status
        db.commit()
        db.refresh(invoice)
        return invoice

    return _make
