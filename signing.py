# signing.py
"""
XAdES-BES signing service for tax-invoice XML

Fragments are assembled as literal text: every DigestValue is computed over
the exact bytes written here, so attribute order, line breaks and spacing
must not be touched after a fragment has been digested.
"""
from lxml import etree
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric import rsa
import base64
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from canonicalization import (
    canonicalize,
    digest,
    int_to_base64,
    strip_xml_declaration,
    wrap_base64,
)
from credential_store import (
    SigningContext,
    ensure_certificate_valid,
    load_credential_store,
    select_signing_context,
)
from exceptions import SigningEngineError, SigningError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DS_NS = "http://www.w3.org/2000/09/xmldsig#"
ETSI_NS = "http://uri.etsi.org/01903/v1.3.2#"
NAMESPACES = f'xmlns:ds="{DS_NS}" xmlns:etsi="{ETSI_NS}"'

C14N_ALGORITHM = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
RSA_SHA1_ALGORITHM = "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
SHA1_ALGORITHM = "http://www.w3.org/2000/09/xmldsig#sha1"
ENVELOPED_SIGNATURE_ALGORITHM = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
SIGNED_PROPERTIES_TYPE = "http://uri.etsi.org/01903#SignedProperties"

DOCUMENT_ID = "comprobante"
OBJECT_DESCRIPTION = "contenido comprobante"
OBJECT_MIME_TYPE = "text/xml"

ID_SUFFIX_MIN = 990
ID_SUFFIX_MAX = 9999


@dataclass(frozen=True)
class SignatureIds:
    """Numeric suffixes of the Id attributes of one signature"""

    certificate: int
    signature: int
    signed_properties: int
    signed_info: int
    signed_properties_reference: int
    document_reference: int
    signature_value: int
    object: int

    @classmethod
    def generate(cls, rng: random.Random) -> "SignatureIds":
        # Drawn independently; collisions are possible and tolerated
        return cls(*(rng.randint(ID_SUFFIX_MIN, ID_SUFFIX_MAX) for _ in range(8)))

    @property
    def signature_id(self) -> str:
        return f"Signature{self.signature}"

    @property
    def signed_properties_id(self) -> str:
        return f"{self.signature_id}-SignedProperties{self.signed_properties}"

    @property
    def key_info_id(self) -> str:
        return f"Certificate{self.certificate}"

    @property
    def document_reference_id(self) -> str:
        return f"Reference-ID-{self.document_reference}"


def inject_namespaces(fragment: str, tag: str) -> str:
    """Add the ds/etsi namespace declarations to the fragment's root start tag"""
    return fragment.replace(f"<{tag}", f"<{tag} {NAMESPACES}", 1)


def splice_signature(xml: str, signature: str, declaration_line_break: bool = True) -> str:
    """
    Insert the signature just before the last tag of a canonical document

    Args:
        xml: Canonicalized document
        signature: Complete <ds:Signature> element
        declaration_line_break: Put one line break after the XML declaration

    Returns:
        str: Signed document
    """
    closing_tag = re.search(r"<[^<]+$", xml)
    if closing_tag is None:
        raise SigningError("Document has no closing tag to insert the signature before")

    signed = xml[:closing_tag.start()] + signature + xml[closing_tag.start():]

    if declaration_line_break:
        signed = re.sub(r"^(<\?xml[^>]*\?>)\s*", lambda m: m.group(1) + "\n", signed, count=1)

    return signed


class XadesSigningService:
    @staticmethod
    def sign_xml(
        p12_data: bytes,
        p12_password,
        xml_data: str,
        now: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
    ) -> str:
        """
        Sign a tax-invoice document with an enveloped XAdES-BES signature

        Args:
            p12_data: PKCS#12 credential bytes
            p12_password: Credential password
            xml_data: Invoice XML whose root carries id="comprobante"
            now: Signing instant, defaults to the current UTC time
            rng: Source for the Id suffixes, defaults to a fresh Random

        Returns:
            str: The canonicalized document with the signature embedded

        Raises:
            CredentialError, UnsupportedCertificateError,
            ExpiredCertificateError, SigningError
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            # Naive instants are UTC, as in the validity check
            now = now.replace(tzinfo=timezone.utc)
        if rng is None:
            rng = random.Random()

        try:
            store = load_credential_store(p12_data, p12_password)
            context = select_signing_context(store)
            ensure_certificate_valid(context.certificate, now)

            if f'"{DOCUMENT_ID}"' not in xml_data:
                logger.warning(f"Document has no element identified as '{DOCUMENT_ID}'")

            xml = canonicalize(xml_data)
            document_digest = digest(strip_xml_declaration(xml))

            ids = SignatureIds.generate(rng)

            signed_properties = XadesSigningService._create_signed_properties(context, ids, now)
            signed_properties_digest = digest(
                inject_namespaces(signed_properties, "etsi:SignedProperties")
            )

            key_info = XadesSigningService._create_key_info(context, ids)
            key_info_digest = digest(inject_namespaces(key_info, "ds:KeyInfo"))

            signed_info = XadesSigningService._create_signed_info(
                ids,
                signed_properties_digest,
                key_info_digest,
                document_digest,
            )
            signature_value = XadesSigningService._sign_signed_info(
                inject_namespaces(signed_info, "ds:SignedInfo"),
                context.private_key,
            )

            signature = XadesSigningService._create_signature_element(
                ids,
                signed_info,
                signature_value,
                key_info,
                signed_properties,
            )
            signed_xml = splice_signature(xml, signature)

            logger.info(f"XML document signed successfully ({context.authority.name})")
            return signed_xml

        except SigningEngineError as e:
            logger.error(f"XML signing error: {str(e)}")
            raise
        except Exception as e:
            logger.error(f"XML signing error: {str(e)}")
            raise SigningError(f"XML signing failed: {str(e)}") from e

    @staticmethod
    def _create_signed_properties(context: SigningContext, ids: SignatureIds, now: datetime) -> str:
        """Create the etsi:SignedProperties fragment"""
        signing_time = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        certificate_der = context.certificate.public_bytes(serialization.Encoding.DER)

        signed_properties = f'<etsi:SignedProperties Id="{ids.signed_properties_id}">'
        signed_properties += "<etsi:SignedSignatureProperties>"
        signed_properties += f"<etsi:SigningTime>{signing_time}</etsi:SigningTime>"
        signed_properties += "<etsi:SigningCertificate>"
        signed_properties += "<etsi:Cert>"
        signed_properties += "<etsi:CertDigest>"
        signed_properties += f'<ds:DigestMethod Algorithm="{SHA1_ALGORITHM}"></ds:DigestMethod>'
        signed_properties += f"<ds:DigestValue>{digest(certificate_der)}</ds:DigestValue>"
        signed_properties += "</etsi:CertDigest>"
        signed_properties += "<etsi:IssuerSerial>"
        signed_properties += f"<ds:X509IssuerName>{context.issuer_name}</ds:X509IssuerName>"
        signed_properties += f"<ds:X509SerialNumber>{context.serial_number}</ds:X509SerialNumber>"
        signed_properties += "</etsi:IssuerSerial>"
        signed_properties += "</etsi:Cert>"
        signed_properties += "</etsi:SigningCertificate>"
        signed_properties += "</etsi:SignedSignatureProperties>"
        signed_properties += "<etsi:SignedDataObjectProperties>"
        signed_properties += f'<etsi:DataObjectFormat ObjectReference="#{ids.document_reference_id}">'
        signed_properties += f"<etsi:Description>{OBJECT_DESCRIPTION}</etsi:Description>"
        signed_properties += f"<etsi:MimeType>{OBJECT_MIME_TYPE}</etsi:MimeType>"
        signed_properties += "</etsi:DataObjectFormat>"
        signed_properties += "</etsi:SignedDataObjectProperties>"
        signed_properties += "</etsi:SignedProperties>"

        return signed_properties

    @staticmethod
    def _create_key_info(context: SigningContext, ids: SignatureIds) -> str:
        """Create the ds:KeyInfo fragment"""
        certificate_der = context.certificate.public_bytes(serialization.Encoding.DER)
        certificate_b64 = wrap_base64(base64.b64encode(certificate_der).decode("ascii"))
        modulus = wrap_base64(int_to_base64(context.modulus))
        exponent = int_to_base64(context.exponent)

        key_info = f'<ds:KeyInfo Id="{ids.key_info_id}">'
        key_info += "\n<ds:X509Data>"
        key_info += f"\n<ds:X509Certificate>\n{certificate_b64}\n</ds:X509Certificate>"
        key_info += "\n</ds:X509Data>"
        key_info += "\n<ds:KeyValue>"
        key_info += "\n<ds:RSAKeyValue>"
        key_info += f"\n<ds:Modulus>\n{modulus}\n</ds:Modulus>"
        key_info += f"\n<ds:Exponent>\n{exponent}\n</ds:Exponent>"
        key_info += "\n</ds:RSAKeyValue>"
        key_info += "\n</ds:KeyValue>"
        key_info += "\n</ds:KeyInfo>"

        return key_info

    @staticmethod
    def _create_signed_info(
        ids: SignatureIds,
        signed_properties_digest: str,
        key_info_digest: str,
        document_digest: str,
    ) -> str:
        """Create the ds:SignedInfo fragment"""
        digest_method = f'\n<ds:DigestMethod Algorithm="{SHA1_ALGORITHM}"></ds:DigestMethod>'

        signed_info = f'<ds:SignedInfo Id="Signature-SignedInfo{ids.signed_info}">'
        signed_info += f'\n<ds:CanonicalizationMethod Algorithm="{C14N_ALGORITHM}"></ds:CanonicalizationMethod>'
        signed_info += f'\n<ds:SignatureMethod Algorithm="{RSA_SHA1_ALGORITHM}"></ds:SignatureMethod>'

        # SignedProperties
        signed_info += (
            f'\n<ds:Reference Id="SignedPropertiesID{ids.signed_properties_reference}"'
            f' Type="{SIGNED_PROPERTIES_TYPE}" URI="#{ids.signed_properties_id}">'
        )
        signed_info += digest_method
        signed_info += f"\n<ds:DigestValue>{signed_properties_digest}</ds:DigestValue>"
        signed_info += "\n</ds:Reference>"

        # KeyInfo
        signed_info += f'\n<ds:Reference URI="#{ids.key_info_id}">'
        signed_info += digest_method
        signed_info += f"\n<ds:DigestValue>{key_info_digest}</ds:DigestValue>"
        signed_info += "\n</ds:Reference>"

        # Document
        signed_info += f'\n<ds:Reference Id="{ids.document_reference_id}" URI="#{DOCUMENT_ID}">'
        signed_info += "\n<ds:Transforms>"
        signed_info += f'\n<ds:Transform Algorithm="{ENVELOPED_SIGNATURE_ALGORITHM}"></ds:Transform>'
        signed_info += "\n</ds:Transforms>"
        signed_info += digest_method
        signed_info += f"\n<ds:DigestValue>{document_digest}</ds:DigestValue>"
        signed_info += "\n</ds:Reference>"

        signed_info += "\n</ds:SignedInfo>"

        return signed_info

    @staticmethod
    def _sign_signed_info(signed_info: str, private_key: rsa.RSAPrivateKey) -> str:
        """RSA-SHA1 (PKCS#1 v1.5) signature of the SignedInfo bytes, base64 wrapped"""
        try:
            signature_bytes = private_key.sign(
                signed_info.encode("utf-8"),
                asym_padding.PKCS1v15(),
                hashes.SHA1()
            )
        except (ValueError, TypeError) as e:
            raise SigningError(f"RSA signing failed: {str(e)}") from e

        return wrap_base64(base64.b64encode(signature_bytes).decode("ascii"))

    @staticmethod
    def _create_signature_element(
        ids: SignatureIds,
        signed_info: str,
        signature_value: str,
        key_info: str,
        signed_properties: str,
    ) -> str:
        """Create the complete ds:Signature element"""
        signature = f'<ds:Signature {NAMESPACES} Id="{ids.signature_id}">'
        signature += "\n" + signed_info
        signature += f'\n<ds:SignatureValue Id="SignatureValue{ids.signature_value}">\n'
        signature += signature_value
        signature += "\n</ds:SignatureValue>"
        signature += "\n" + key_info
        signature += f'\n<ds:Object Id="{ids.signature_id}-Object{ids.object}">'
        signature += f'<etsi:QualifyingProperties Target="#{ids.signature_id}">'
        signature += signed_properties
        signature += "</etsi:QualifyingProperties>"
        signature += "</ds:Object>"
        signature += "</ds:Signature>"

        return signature

    @staticmethod
    def verify_signature(signed_xml: str) -> bool:
        """
        Verify a document signed by sign_xml

        Recomputes the SignedProperties, KeyInfo and document digests, then
        checks SignatureValue with the RSA key published in KeyInfo.

        Returns:
            bool: True if every digest matches and the signature is valid
        """
        try:
            signature_text = _extract(signed_xml, r"<ds:Signature [\s\S]*?</ds:Signature>")
            signed_info = _extract(signature_text, r"<ds:SignedInfo[\s\S]*?</ds:SignedInfo>")
            key_info = _extract(signature_text, r"<ds:KeyInfo[\s\S]*?</ds:KeyInfo>")
            signed_properties = _extract(
                signature_text, r"<etsi:SignedProperties[\s\S]*?</etsi:SignedProperties>"
            )
            if None in (signature_text, signed_info, key_info, signed_properties):
                logger.error("Incomplete signature structure")
                return False

            root = etree.fromstring(signed_xml.encode("utf-8"))
            ns = {"ds": DS_NS}

            signatures = root.findall(".//ds:Signature", ns)
            if len(signatures) != 1:
                logger.error(f"Expected one signature, found {len(signatures)}")
                return False
            signature = signatures[0]

            references = {
                reference.get("URI"): reference.findtext("ds:DigestValue", namespaces=ns)
                for reference in signature.findall("ds:SignedInfo/ds:Reference", ns)
            }
            key_info_id = signature.find("ds:KeyInfo", ns).get("Id")
            signed_properties_id = re.search(r'Id="([^"]+)"', signed_properties).group(1)

            document = canonicalize(signed_xml.replace(signature_text, "", 1))
            expected = {
                f"#{signed_properties_id}": digest(
                    inject_namespaces(signed_properties, "etsi:SignedProperties")
                ),
                f"#{key_info_id}": digest(inject_namespaces(key_info, "ds:KeyInfo")),
                f"#{DOCUMENT_ID}": digest(strip_xml_declaration(document)),
            }
            for uri, value in expected.items():
                if references.get(uri) != value:
                    logger.error(f"Digest mismatch for reference {uri}")
                    return False

            modulus = base64.b64decode(signature.findtext(".//ds:Modulus", namespaces=ns))
            exponent = base64.b64decode(signature.findtext(".//ds:Exponent", namespaces=ns))
            public_key = rsa.RSAPublicNumbers(
                int.from_bytes(exponent, "big"),
                int.from_bytes(modulus, "big"),
            ).public_key()

            sig_bytes = base64.b64decode(signature.findtext("ds:SignatureValue", namespaces=ns))
            public_key.verify(
                sig_bytes,
                inject_namespaces(signed_info, "ds:SignedInfo").encode("utf-8"),
                asym_padding.PKCS1v15(),
                hashes.SHA1()
            )

            logger.info("XML signature verified successfully")
            return True

        except InvalidSignature:
            logger.error("Signature verification failed: signature does not match")
            return False
        except (etree.XMLSyntaxError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Signature verification failed: {str(e)}")
            return False


def _extract(text: Optional[str], pattern: str) -> Optional[str]:
    if text is None:
        return None
    match = re.search(pattern, text)
    return match.group(0) if match else None


def sign_xml(p12_data: bytes, p12_password, xml_data: str, now=None, rng=None) -> str:
    """Sign `xml_data` with the credential; see XadesSigningService.sign_xml"""
    return XadesSigningService.sign_xml(p12_data, p12_password, xml_data, now=now, rng=rng)


def verify_signature(signed_xml: str) -> bool:
    return XadesSigningService.verify_signature(signed_xml)
