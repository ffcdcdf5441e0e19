# loaders.py
"""
Retrieval of credentials and invoice documents for the signing service
"""
import logging

import httpx

from exceptions import LoaderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def load_credential_from_file(path: str) -> bytes:
    """Read a PKCS#12 credential from the local file system"""
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        logger.error(f"Could not read credential {path}: {str(e)}")
        raise LoaderError(f"Could not read credential {path}: {str(e)}") from e


def load_xml_from_file(path: str) -> str:
    """Read an XML document from the local file system as UTF-8 text"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        logger.error(f"Could not read document {path}: {str(e)}")
        raise LoaderError(f"Could not read document {path}: {str(e)}") from e


async def _fetch(url: str, timeout: float) -> httpx.Response:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
        response.raise_for_status()
    except httpx.TimeoutException as e:
        logger.error(f"Request to {url} timed out")
        raise LoaderError(f"Request to {url} timed out") from e
    except httpx.HTTPStatusError as e:
        logger.error(f"{url} answered {e.response.status_code}")
        raise LoaderError(f"{url} answered {e.response.status_code}") from e
    except httpx.RequestError as e:
        logger.error(f"Network error fetching {url}: {str(e)}")
        raise LoaderError(f"Network error fetching {url}: {str(e)}") from e

    logger.info(f"Fetched {len(response.content)} bytes from {url}")
    return response


async def fetch_credential(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Download a PKCS#12 credential"""
    response = await _fetch(url, timeout)
    return response.content


async def fetch_xml(url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Download an XML document as text"""
    response = await _fetch(url, timeout)
    return response.text
