# key_generator.py
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from cryptography.hazmat.primitives import hashes
import datetime


def _generate_key(key_size=2048):
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def _ca_certificate(subject, issuer, public_key, signing_key, not_before, not_after):
    return x509.CertificateBuilder().subject_name(
        subject
    ).issuer_name(
        issuer
    ).public_key(
        public_key
    ).serial_number(
        x509.random_serial_number()
    ).not_valid_before(
        not_before
    ).not_valid_after(
        not_after
    ).add_extension(
        x509.BasicConstraints(ca=True, path_length=None), critical=True,
    ).add_extension(
        x509.KeyUsage(
            digital_signature=False, content_commitment=False, key_encipherment=False,
            data_encipherment=False, key_agreement=False, key_cert_sign=True,
            crl_sign=True, encipher_only=False, decipher_only=False,
        ),
        critical=True,
    ).add_extension(
        x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False,
    ).sign(signing_key, hashes.SHA256())


def generate_certificate_chain(ca_organization="SECURITY DATA S.A.", not_before=None,
                               not_after=None, key_size=2048):
    """
    Build a root CA, an intermediate CA and an end-entity signing certificate

    The end-entity certificate carries more extensions than either CA so it
    is the one picked as the signer's certificate.

    Returns:
        tuple: (leaf_key, leaf_cert, intermediate_cert, root_cert)
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    if not_before is None:
        not_before = now - datetime.timedelta(days=1)
    if not_after is None:
        not_after = now + datetime.timedelta(days=365)

    ca_not_before = min(not_before, now) - datetime.timedelta(days=30)
    ca_not_after = max(not_after, now) + datetime.timedelta(days=3650)

    root_key = _generate_key(key_size)
    root_name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "EC"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, ca_organization),
        x509.NameAttribute(NameOID.COMMON_NAME, f"AC RAIZ {ca_organization}"),
    ])
    root_cert = _ca_certificate(
        root_name, root_name, root_key.public_key(), root_key, ca_not_before, ca_not_after
    )

    intermediate_key = _generate_key(key_size)
    intermediate_name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "EC"),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, ca_organization),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "ENTIDAD DE CERTIFICACION"),
        x509.NameAttribute(NameOID.COMMON_NAME, f"AUTORIDAD DE CERTIFICACION SUBCA-2 {ca_organization}"),
    ])
    intermediate_cert = _ca_certificate(
        intermediate_name, root_name, intermediate_key.public_key(), root_key,
        ca_not_before, ca_not_after,
    )

    leaf_key = _generate_key(key_size)
    leaf_name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "EC"),
        x509.NameAttribute(NameOID.SERIAL_NUMBER, "0102030405"),
        x509.NameAttribute(NameOID.COMMON_NAME, "CONTRIBUYENTE DE PRUEBA"),
    ])
    leaf_cert = x509.CertificateBuilder().subject_name(
        leaf_name
    ).issuer_name(
        intermediate_name
    ).public_key(
        leaf_key.public_key()
    ).serial_number(
        x509.random_serial_number()
    ).not_valid_before(
        not_before
    ).not_valid_after(
        not_after
    ).add_extension(
        x509.BasicConstraints(ca=False, path_length=None), critical=True,
    ).add_extension(
        x509.KeyUsage(
            digital_signature=True, content_commitment=True, key_encipherment=True,
            data_encipherment=False, key_agreement=False, key_cert_sign=False,
            crl_sign=False, encipher_only=False, decipher_only=False,
        ),
        critical=True,
    ).add_extension(
        x509.ExtendedKeyUsage([ExtendedKeyUsageOID.EMAIL_PROTECTION]), critical=False,
    ).add_extension(
        x509.SubjectAlternativeName([x509.RFC822Name("facturacion@example.com")]), critical=False,
    ).add_extension(
        x509.SubjectKeyIdentifier.from_public_key(leaf_key.public_key()), critical=False,
    ).add_extension(
        x509.AuthorityKeyIdentifier.from_issuer_public_key(intermediate_key.public_key()),
        critical=False,
    ).sign(intermediate_key, hashes.SHA256())

    return leaf_key, leaf_cert, intermediate_cert, root_cert


def generate_credential(password="123456", ca_friendly_name="SECURITY DATA S.A. 2",
                        key_friendly_name="CONTRIBUYENTE DE PRUEBA", not_before=None,
                        not_after=None, key_size=2048):
    """
    Pack a freshly generated signing chain into a PKCS#12 store

    Both CA certificates carry `ca_friendly_name`, which is what the signer
    uses to recognize the issuing authority.

    Returns:
        bytes: PKCS#12 (DER) credential protected with `password`
    """
    leaf_key, leaf_cert, intermediate_cert, root_cert = generate_certificate_chain(
        not_before=not_before, not_after=not_after, key_size=key_size
    )

    return pkcs12.serialize_key_and_certificates(
        name=key_friendly_name.encode("utf-8"),
        key=leaf_key,
        cert=leaf_cert,
        cas=[
            pkcs12.PKCS12Certificate(intermediate_cert, ca_friendly_name.encode("utf-8")),
            pkcs12.PKCS12Certificate(root_cert, ca_friendly_name.encode("utf-8")),
        ],
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
    )


if __name__ == "__main__":
    with open("credential.p12", "wb") as f:
        f.write(generate_credential())

    print("Credential generated successfully!")
    print("credential.p12 - PKCS#12 store for signing (password: 123456)")
