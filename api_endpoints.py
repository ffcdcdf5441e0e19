# api_endpoints.py
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, field_validator
from starlette.concurrency import run_in_threadpool
from typing import Optional
import base64
import binascii
import logging

from exceptions import (
    CredentialError,
    ExpiredCertificateError,
    LoaderError,
    SigningError,
    UnsupportedCertificateError,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter()


class SignRequest(BaseModel):
    xml: str = Field(..., min_length=1, description="Invoice XML with a root identified as 'comprobante'")
    credential_base64: Optional[str] = Field(default=None, description="Base64 PKCS#12 credential")
    password: Optional[str] = Field(default=None, description="Credential password")

    @field_validator('credential_base64')
    @classmethod
    def validate_credential(cls, v):
        if v is None:
            return v
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError('Credential must be base64 encoded')
        return v


class RemoteSignRequest(BaseModel):
    xml_url: str = Field(..., min_length=1)
    credential_url: str = Field(..., min_length=1)
    password: str = Field(default="")


def _signing_http_error(e: Exception) -> HTTPException:
    """Map a signing engine failure to the HTTP status reported to the caller"""
    if isinstance(e, CredentialError):
        return HTTPException(status_code=400, detail=f"Invalid credential: {str(e)}")
    if isinstance(e, (UnsupportedCertificateError, ExpiredCertificateError)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, LoaderError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=f"XML signing failed: {str(e)}")


async def _sign(credential: bytes, password: Optional[str], xml: str) -> str:
    from signing import sign_xml

    try:
        signed_xml = await run_in_threadpool(sign_xml, credential, password, xml)
        logger.info("XML signed successfully")
        return signed_xml
    except (CredentialError, UnsupportedCertificateError, ExpiredCertificateError, SigningError) as e:
        logger.error(f"Signing failed: {str(e)}")
        raise _signing_http_error(e)


@router.post("/sign")
async def sign_document(request: SignRequest):
    """
    Sign an invoice XML with an enveloped XAdES-BES signature

    Uses the credential in the request when present, otherwise the
    service's configured credential.
    """
    try:
        # Import here to avoid circular imports
        from main import signing_credentials

        if request.credential_base64:
            credential = base64.b64decode(request.credential_base64)
            password = request.password
        else:
            if not signing_credentials.credential:
                raise HTTPException(
                    status_code=500,
                    detail="Signing credential not loaded. Run key_generator.py first."
                )
            credential = signing_credentials.credential
            password = request.password if request.password is not None else signing_credentials.password

        signed_xml = await _sign(credential, password, request.xml)

        return {
            "status": "success",
            "signed_xml": signed_xml
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Signing failed: {str(e)}")


@router.post("/sign-remote")
async def sign_remote_document(request: RemoteSignRequest):
    """
    Fetch the credential and the invoice XML, then sign
    """
    try:
        from main import FETCH_TIMEOUT
        from loaders import fetch_credential, fetch_xml

        try:
            credential = await fetch_credential(request.credential_url, timeout=FETCH_TIMEOUT)
            xml = await fetch_xml(request.xml_url, timeout=FETCH_TIMEOUT)
        except LoaderError as e:
            raise _signing_http_error(e)

        signed_xml = await _sign(credential, request.password, xml)

        return {
            "status": "success",
            "signed_xml": signed_xml
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Signing failed: {str(e)}")


@router.post("/verify")
async def verify_document(request: Request):
    """
    Verify the signature embedded in a signed invoice XML
    """
    from signing import verify_signature

    body = await request.body()
    try:
        signed_xml = body.decode('utf-8')
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Document must be UTF-8 encoded")

    is_valid = await run_in_threadpool(verify_signature, signed_xml)
    logger.info(f"Signature verification result: {is_valid}")

    return {
        "status": "success",
        "valid": is_valid
    }
