# credential_store.py
"""
PKCS#12 credential handling for the XAdES signer

Decodes the credential store, picks the signing certificate and its key
according to the issuing authority's conventions and enforces the
certificate validity window.
"""
import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from asn1crypto import pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from exceptions import (
    CredentialError,
    ExpiredCertificateError,
    SigningError,
    UnsupportedCertificateError,
)

logger = logging.getLogger(__name__)

# forge-style short names the authority's validator renders issuers with
_SHORT_NAME_OVERRIDES = {
    NameOID.EMAIL_ADDRESS: "E",
}


@dataclass(frozen=True)
class CertificateEntry:
    certificate: x509.Certificate
    friendly_name: Optional[str] = None

    @property
    def extension_count(self) -> int:
        return len(self.certificate.extensions)


@dataclass(frozen=True)
class KeyEntry:
    private_key: object
    friendly_name: Optional[str] = None


@dataclass(frozen=True)
class CredentialStore:
    certificates: List[CertificateEntry]
    keys: List[KeyEntry]


class IssuingAuthority(enum.Enum):
    """Known conventions for laying out the signer's PKCS#12 store"""

    BANCO_CENTRAL = "BANCO CENTRAL"
    SECURITY_DATA = "SECURITY DATA"
    UNSUPPORTED = None

    @classmethod
    def classify(cls, friendly_name: Optional[str]) -> "IssuingAuthority":
        if friendly_name:
            for authority in (cls.BANCO_CENTRAL, cls.SECURITY_DATA):
                if re.search(authority.value, friendly_name, re.IGNORECASE):
                    return authority
        return cls.UNSUPPORTED


@dataclass(frozen=True)
class SigningContext:
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey
    issuer_name: str
    serial_number: int
    modulus: int
    exponent: int
    authority: IssuingAuthority


def _decode_friendly_name(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _password_bytes(password) -> Optional[bytes]:
    if not password:
        return None
    if isinstance(password, str):
        return password.encode("utf-8")
    return password


def _enumerate_key_entries(p12_data: bytes, password: Optional[bytes]) -> List[KeyEntry]:
    """
    Decrypt every key bag kept in the unencrypted safe contents.

    Key bags inside encrypted safe contents are not visited; callers fall
    back to the store's paired key when nothing is found here.
    """
    entries = []
    pfx = asn1_pkcs12.Pfx.load(p12_data)

    for content_info in pfx.authenticated_safe:
        if content_info["content_type"].native != "data":
            continue
        safe_contents = asn1_pkcs12.SafeContents.load(content_info["content"].native)

        for bag in safe_contents:
            bag_id = bag["bag_id"].native
            if bag_id not in ("pkcs8_shrouded_key_bag", "key_bag"):
                continue

            friendly_name = None
            for attribute in bag["bag_attributes"].native or []:
                if attribute["type"] == "friendly_name" and attribute["values"]:
                    friendly_name = attribute["values"][0]

            der = bag["bag_value"].untag().dump()
            private_key = serialization.load_der_private_key(
                der,
                password=password if bag_id == "pkcs8_shrouded_key_bag" else None,
            )
            entries.append(KeyEntry(private_key=private_key, friendly_name=friendly_name))

    return entries


def load_credential_store(p12_data: bytes, password) -> CredentialStore:
    """
    Decode a PKCS#12 blob into certificate and key entries

    Args:
        p12_data: Raw PKCS#12 (DER) bytes
        password: Store password, used for both the store and its key bags

    Returns:
        CredentialStore: Certificates (paired certificate first) and keys

    Raises:
        CredentialError: Malformed store or wrong password
    """
    password = _password_bytes(password)

    try:
        store = pkcs12.load_pkcs12(p12_data, password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.error(f"Could not open credential store: {str(e)}")
        raise CredentialError(f"Invalid credential store or wrong password: {str(e)}") from e

    certificates = []
    if store.cert is not None:
        certificates.append(CertificateEntry(
            certificate=store.cert.certificate,
            friendly_name=_decode_friendly_name(store.cert.friendly_name),
        ))
    for extra in store.additional_certs:
        certificates.append(CertificateEntry(
            certificate=extra.certificate,
            friendly_name=_decode_friendly_name(extra.friendly_name),
        ))

    if not certificates:
        raise CredentialError("Credential store contains no certificates")

    try:
        keys = _enumerate_key_entries(p12_data, password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.warning(f"Key bags could not be enumerated, using paired key: {str(e)}")
        keys = []

    if not keys and store.key is not None:
        paired_name = store.cert.friendly_name if store.cert is not None else None
        keys = [KeyEntry(private_key=store.key, friendly_name=_decode_friendly_name(paired_name))]

    logger.info(f"Credential store loaded: {len(certificates)} certificate(s), {len(keys)} key(s)")
    return CredentialStore(certificates=certificates, keys=keys)


def format_issuer_name(certificate: x509.Certificate) -> str:
    """Issuer attributes in reverse order as ShortName=Value, comma joined"""
    parts = []
    for attribute in reversed(list(certificate.issuer)):
        short_name = _SHORT_NAME_OVERRIDES.get(attribute.oid, attribute.rfc4514_attribute_name)
        parts.append(f"{short_name}={attribute.value}")
    return ",".join(parts)


def select_leaf_certificate(certificates: List[CertificateEntry]) -> CertificateEntry:
    # Most extensions is taken as "end-entity"; the first one seen wins ties
    leaf = certificates[0]
    for entry in certificates[1:]:
        if entry.extension_count > leaf.extension_count:
            leaf = entry
    return leaf


def _select_private_key(authority: IssuingAuthority, keys: List[KeyEntry]):
    if authority is IssuingAuthority.BANCO_CENTRAL:
        for entry in keys:
            if entry.friendly_name and re.search("Signing Key", entry.friendly_name, re.IGNORECASE):
                return entry.private_key
        raise CredentialError("No 'Signing Key' entry found in the credential store")

    if authority is IssuingAuthority.SECURITY_DATA:
        if not keys:
            raise CredentialError("Credential store contains no private key")
        return keys[0].private_key

    raise UnsupportedCertificateError("Certificate issuer is not supported")


def select_signing_context(store: CredentialStore) -> SigningContext:
    """
    Pick the signer certificate and its private key from a decoded store

    Raises:
        UnsupportedCertificateError: Issuer friendly name is not recognized
        CredentialError: The expected key entry is missing
        SigningError: The selected key is not an RSA key
    """
    if not store.certificates:
        raise CredentialError("Credential store contains no certificates")

    leaf = select_leaf_certificate(store.certificates)

    # Entries are ordered paired certificate first, then the remaining bags,
    # not raw bag order; the two agree when the leaf bag comes first
    reference = store.certificates[1] if len(store.certificates) > 1 else store.certificates[0]
    authority = IssuingAuthority.classify(reference.friendly_name)
    if authority is IssuingAuthority.UNSUPPORTED:
        logger.error(f"Unsupported certificate issuer: {reference.friendly_name!r}")
        raise UnsupportedCertificateError(
            f"Unsupported certificate issuer: {reference.friendly_name!r}"
        )

    private_key = _select_private_key(authority, store.keys)
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningError(f"Signing key must be RSA, got {type(private_key).__name__}")

    public_numbers = private_key.public_key().public_numbers()

    return SigningContext(
        certificate=leaf.certificate,
        private_key=private_key,
        issuer_name=format_issuer_name(leaf.certificate),
        serial_number=leaf.certificate.serial_number,
        modulus=public_numbers.n,
        exponent=public_numbers.e,
        authority=authority,
    )


def ensure_certificate_valid(certificate: x509.Certificate, now: Optional[datetime] = None) -> None:
    """
    Reject a certificate outside its validity window

    Raises:
        ExpiredCertificateError: now < notBefore or now > notAfter
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    not_before = certificate.not_valid_before_utc
    not_after = certificate.not_valid_after_utc

    if now < not_before:
        raise ExpiredCertificateError(f"Certificate is not valid before {not_before.isoformat()}")
    if now > not_after:
        raise ExpiredCertificateError(f"Certificate expired on {not_after.isoformat()}")
