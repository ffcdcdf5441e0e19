# conftest.py
import datetime

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from key_generator import generate_certificate_chain, generate_credential

PASSWORD = "123456"

INVOICE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<factura xmlns:ds="http://www.w3.org/2000/09/xmldsig#" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" id="comprobante" version="1.0.0">
    <infoTributaria>
        <ambiente>1</ambiente>
        <tipoEmision>1</tipoEmision>
        <razonSocial>CONTRIBUYENTE DE PRUEBA</razonSocial>
        <ruc>1790011223001</ruc>
        <codDoc>01</codDoc>
        <estab>001</estab>
        <ptoEmi>001</ptoEmi>
        <secuencial>000000001</secuencial>
    </infoTributaria>
    <infoFactura>
        <fechaEmision>15/01/2026</fechaEmision>
        <importeTotal>112.00</importeTotal>
    </infoFactura>
</factura>"""

EMPTY_INVOICE_XML = '<?xml version="1.0" encoding="UTF-8"?>\n<factura id="comprobante" version="1.0.0"></factura>'


@pytest.fixture(scope="session")
def credential():
    return generate_credential(password=PASSWORD)


@pytest.fixture(scope="session")
def expired_credential():
    now = datetime.datetime.now(datetime.timezone.utc)
    return generate_credential(
        password=PASSWORD,
        not_before=now - datetime.timedelta(days=730),
        not_after=now - datetime.timedelta(days=365),
    )


@pytest.fixture(scope="session")
def unsupported_credential():
    return generate_credential(password=PASSWORD, ca_friendly_name="ACME TRUST SERVICES CA")


@pytest.fixture(scope="session")
def certificate_chain():
    return generate_certificate_chain()


@pytest.fixture(scope="session")
def spare_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def banco_central_credential():
    return generate_credential(
        password=PASSWORD,
        ca_friendly_name="AC BANCO CENTRAL DEL ECUADOR",
        key_friendly_name="Signing Key",
    )
