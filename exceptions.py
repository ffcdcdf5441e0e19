# exceptions.py
"""
Error kinds raised by the signing engine
"""


class SigningEngineError(Exception):
    """Base class for every failure the signing engine reports"""


class CredentialError(SigningEngineError):
    """Malformed PKCS#12 store, wrong password or missing key material"""


class UnsupportedCertificateError(SigningEngineError):
    """The issuing authority of the credential is not recognized"""


class ExpiredCertificateError(SigningEngineError):
    """Current time is outside the certificate validity window"""


class SigningError(SigningEngineError):
    """Digesting, RSA signing or splicing failed"""


class LoaderError(Exception):
    """A credential or document could not be retrieved"""
