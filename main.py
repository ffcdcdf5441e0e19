# main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os

from exceptions import LoaderError
from loaders import load_credential_from_file

logger = logging.getLogger(__name__)

app = FastAPI(title="XAdES Invoice Signing API", version="1.0.0")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configuration
SIGNING_P12_PATH = os.getenv("SIGNING_P12_PATH", "credential.p12")
SIGNING_P12_PASSWORD = os.getenv("SIGNING_P12_PASSWORD", "")
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "30"))


class SigningCredentials:
    """The service's own PKCS#12 credential, used when a request brings none"""

    def __init__(self, path=SIGNING_P12_PATH, password=SIGNING_P12_PASSWORD):
        self.path = path
        self.password = password
        self.credential = None
        self.load()

    def load(self):
        """Read the configured credential; the service still starts without one"""
        if not self.path or not os.path.exists(self.path):
            logger.warning(f"Signing credential not found at {self.path!r}")
            return

        try:
            self.credential = load_credential_from_file(self.path)
            logger.info(f"Signing credential loaded from {self.path}")
        except LoaderError as e:
            logger.error(f"Error loading signing credential: {e}")
            raise


signing_credentials = SigningCredentials()


@app.on_event("startup")
async def startup_event():
    """Check if the signing credential is loaded on startup"""
    if not signing_credentials.credential:
        logger.warning("No signing credential loaded. Run key_generator.py or set SIGNING_P12_PATH")


@app.get("/")
async def root():
    return {
        "message": "XAdES Invoice Signing API",
        "status": "running",
        "version": "1.0.0",
        "endpoints": {
            "sign": "/api/sign",
            "sign_remote": "/api/sign-remote",
            "verify": "/api/verify",
            "health": "/health"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "credential_loaded": signing_credentials.credential is not None
    }
