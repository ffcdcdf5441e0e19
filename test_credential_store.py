# test_credential_store.py
import datetime

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa

import credential_store
from conftest import PASSWORD
from credential_store import (
    CertificateEntry,
    CredentialStore,
    IssuingAuthority,
    KeyEntry,
    ensure_certificate_valid,
    format_issuer_name,
    load_credential_store,
    select_leaf_certificate,
    select_signing_context,
)
from exceptions import (
    CredentialError,
    ExpiredCertificateError,
    SigningError,
    UnsupportedCertificateError,
)


def test_load_credential_store(credential):
    store = load_credential_store(credential, PASSWORD)

    assert len(store.certificates) == 3
    assert store.certificates[0].friendly_name == "CONTRIBUYENTE DE PRUEBA"
    assert store.certificates[1].friendly_name == "SECURITY DATA S.A. 2"
    assert len(store.keys) == 1
    assert isinstance(store.keys[0].private_key, rsa.RSAPrivateKey)
    assert store.keys[0].friendly_name == "CONTRIBUYENTE DE PRUEBA"


def test_load_credential_store_accepts_bytes_password(credential):
    store = load_credential_store(credential, PASSWORD.encode("utf-8"))
    assert len(store.certificates) == 3


def test_load_credential_store_wrong_password(credential):
    with pytest.raises(CredentialError):
        load_credential_store(credential, "not-the-password")


def test_load_credential_store_malformed_bytes():
    with pytest.raises(CredentialError):
        load_credential_store(b"\x30\x03\x02\x01", PASSWORD)


def test_select_signing_context_security_data(credential):
    store = load_credential_store(credential, PASSWORD)
    context = select_signing_context(store)

    assert context.authority is IssuingAuthority.SECURITY_DATA
    assert context.certificate.extensions is not None
    assert len(context.certificate.extensions) == 6
    assert context.issuer_name == (
        "CN=AUTORIDAD DE CERTIFICACION SUBCA-2 SECURITY DATA S.A.,"
        "OU=ENTIDAD DE CERTIFICACION,"
        "O=SECURITY DATA S.A.,"
        "C=EC"
    )
    assert context.serial_number == context.certificate.serial_number
    assert context.exponent == 65537
    assert context.modulus == context.certificate.public_key().public_numbers().n


def test_select_signing_context_unsupported_issuer(unsupported_credential):
    store = load_credential_store(unsupported_credential, PASSWORD)
    with pytest.raises(UnsupportedCertificateError):
        select_signing_context(store)


def test_select_signing_context_banco_central(certificate_chain, spare_key):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    store = CredentialStore(
        certificates=[
            CertificateEntry(root_cert, "root"),
            CertificateEntry(intermediate_cert, "AC BANCO CENTRAL DEL ECUADOR"),
            CertificateEntry(leaf_cert, None),
        ],
        keys=[
            KeyEntry(spare_key, "Encryption Key"),
            KeyEntry(leaf_key, "Signing Key 2026"),
        ],
    )

    context = select_signing_context(store)

    assert context.authority is IssuingAuthority.BANCO_CENTRAL
    assert context.private_key is leaf_key
    assert context.certificate is leaf_cert


def test_select_signing_context_banco_central_without_signing_key(certificate_chain, spare_key):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    store = CredentialStore(
        certificates=[
            CertificateEntry(leaf_cert, None),
            CertificateEntry(intermediate_cert, "banco central del ecuador"),
        ],
        keys=[KeyEntry(spare_key, "Encryption Key")],
    )

    with pytest.raises(CredentialError):
        select_signing_context(store)


def test_select_signing_context_security_data_uses_first_key(certificate_chain, spare_key):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    store = CredentialStore(
        certificates=[
            CertificateEntry(leaf_cert, None),
            CertificateEntry(intermediate_cert, "Security Data Seguridad en Datos"),
        ],
        keys=[KeyEntry(spare_key, "whatever"), KeyEntry(leaf_key, "Signing Key")],
    )

    assert select_signing_context(store).private_key is spare_key


def test_select_signing_context_rejects_non_rsa_key(certificate_chain):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    store = CredentialStore(
        certificates=[
            CertificateEntry(leaf_cert, None),
            CertificateEntry(intermediate_cert, "SECURITY DATA"),
        ],
        keys=[KeyEntry(ec.generate_private_key(ec.SECP256R1()), None)],
    )

    with pytest.raises(SigningError):
        select_signing_context(store)


def test_select_leaf_certificate_prefers_most_extensions(certificate_chain):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    entries = [
        CertificateEntry(root_cert),
        CertificateEntry(leaf_cert),
        CertificateEntry(intermediate_cert),
    ]
    assert select_leaf_certificate(entries).certificate is leaf_cert


def test_select_leaf_certificate_first_seen_wins_ties(certificate_chain):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    # Both CA certificates carry three extensions
    entries = [CertificateEntry(intermediate_cert), CertificateEntry(root_cert)]
    assert select_leaf_certificate(entries).certificate is intermediate_cert


@pytest.mark.parametrize("friendly_name,expected", [
    ("AC BANCO CENTRAL DEL ECUADOR", IssuingAuthority.BANCO_CENTRAL),
    ("banco central", IssuingAuthority.BANCO_CENTRAL),
    ("SECURITY DATA S.A. 2", IssuingAuthority.SECURITY_DATA),
    ("Security Data Seguridad en Datos y Firma Digital", IssuingAuthority.SECURITY_DATA),
    ("ANF AC ECUADOR", IssuingAuthority.UNSUPPORTED),
    ("", IssuingAuthority.UNSUPPORTED),
    (None, IssuingAuthority.UNSUPPORTED),
])
def test_issuing_authority_classify(friendly_name, expected):
    assert IssuingAuthority.classify(friendly_name) is expected


def test_format_issuer_name_reverses_attributes(certificate_chain):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    assert format_issuer_name(root_cert) == (
        "CN=AC RAIZ SECURITY DATA S.A.,O=SECURITY DATA S.A.,C=EC"
    )


def test_ensure_certificate_valid(certificate_chain):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    inside = leaf_cert.not_valid_before_utc + datetime.timedelta(days=2)

    ensure_certificate_valid(leaf_cert, inside)
    ensure_certificate_valid(leaf_cert, inside.replace(tzinfo=None))
    ensure_certificate_valid(leaf_cert)


def test_ensure_certificate_valid_rejects_expired(certificate_chain):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    with pytest.raises(ExpiredCertificateError):
        ensure_certificate_valid(leaf_cert, leaf_cert.not_valid_after_utc + datetime.timedelta(seconds=1))


def test_ensure_certificate_valid_rejects_not_yet_valid(certificate_chain):
    leaf_key, leaf_cert, intermediate_cert, root_cert = certificate_chain
    with pytest.raises(ExpiredCertificateError):
        ensure_certificate_valid(leaf_cert, leaf_cert.not_valid_before_utc - datetime.timedelta(seconds=1))


def test_load_banco_central_store_reads_key_friendly_names(banco_central_credential):
    store = load_credential_store(banco_central_credential, PASSWORD)

    assert [entry.friendly_name for entry in store.keys] == ["Signing Key"]
    assert store.certificates[1].friendly_name == "AC BANCO CENTRAL DEL ECUADOR"


def test_select_signing_context_banco_central_store(banco_central_credential):
    store = load_credential_store(banco_central_credential, PASSWORD)
    context = select_signing_context(store)

    assert context.authority is IssuingAuthority.BANCO_CENTRAL
    assert context.private_key is store.keys[0].private_key
    assert context.modulus == context.certificate.public_key().public_numbers().n


@pytest.mark.parametrize("enumerated", [ValueError("unsupported bag"), []])
def test_load_credential_store_falls_back_to_paired_key(banco_central_credential, monkeypatch, enumerated):
    def fake_enumerate(p12_data, password):
        if isinstance(enumerated, Exception):
            raise enumerated
        return enumerated

    monkeypatch.setattr(credential_store, "_enumerate_key_entries", fake_enumerate)

    store = load_credential_store(banco_central_credential, PASSWORD)

    assert len(store.keys) == 1
    assert store.keys[0].friendly_name == "Signing Key"
    context = select_signing_context(store)
    assert context.modulus == store.certificates[0].certificate.public_key().public_numbers().n
