# canonicalization.py
"""
Whitespace canonicalization and digest encoding used by the XAdES signer
"""
import base64
import hashlib
import re

_WHITESPACE_RUN = re.compile(r"\s+")
_LINE_BREAK_AT_TAG = re.compile(r"(?<=>)(\r?\n)|(\r?\n)(?=</)")
_WHITESPACE_AFTER_TAG = re.compile(r"(?<=>)\s*")
_TAB_OR_CR = re.compile(r"[\t\r]")
_XML_DECLARATION = re.compile(r"^<\?xml[^>]*\?>")

BASE64_LINE_WIDTH = 76


def canonicalize(xml: str) -> str:
    """
    Normalize whitespace in an XML document.

    This is not XML C14N: it only collapses and removes the whitespace the
    authority's validator ignores. The result is the text every document
    digest is computed over and the base the signature is spliced into.
    Running it on its own output returns the same text.
    """
    xml = _WHITESPACE_RUN.sub(" ", xml)
    xml = xml.strip()
    xml = _LINE_BREAK_AT_TAG.sub("", xml)
    xml = xml.strip()
    xml = _WHITESPACE_AFTER_TAG.sub("", xml)
    xml = xml.strip()
    xml = _TAB_OR_CR.sub("", xml)
    return xml.strip()


def strip_xml_declaration(xml: str) -> str:
    """Remove a leading <?xml ...?> declaration, if any"""
    return _XML_DECLARATION.sub("", xml, count=1)


def digest(data) -> str:
    """
    SHA-1 digest in the encoding the authority's verifier expects.

    The hash is rendered as lowercase hex and the ASCII bytes of that hex
    string are base64 encoded, NOT the raw hash bytes. Every DigestValue
    produced by this package uses this encoding; changing it to the usual
    base64-of-raw-hash makes the authority reject the document.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    hex_digest = hashlib.sha1(data).hexdigest()
    return base64.b64encode(hex_digest.encode("ascii")).decode("ascii")


def wrap_base64(value: str, width: int = BASE64_LINE_WIDTH) -> str:
    """Split a base64 string into lines of at most `width` characters"""
    return "\n".join(value[i:i + width] for i in range(0, len(value), width))


def int_to_base64(value: int) -> str:
    """Base64 of the minimal big-endian byte representation of an integer"""
    length = max(1, (value.bit_length() + 7) // 8)
    return base64.b64encode(value.to_bytes(length, "big")).decode("ascii")
