"""
PayPal webhook signature verification.

PayPal signs "{transmission_id}|{transmission_time}|{webhook_id}|{crc32(body)}"
with SHA256withRSA and publishes the signing certificate at PAYPAL-CERT-URL.
Verification works on the raw body, before the event is parsed.
"""
import base64
import binascii
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx
import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from paypal_checkout.config import Settings, get_settings
from paypal_checkout.core.exceptions import ServerError, UnauthorizedError
from paypal_checkout.integrations.resilience import ResilientTransport

logger = structlog.get_logger(__name__)

TRANSMISSION_ID = "PAYPAL-TRANSMISSION-ID"
TRANSMISSION_TIME = "PAYPAL-TRANSMISSION-TIME"
AUTH_ALGO = "PAYPAL-AUTH-ALGO"
TRANSMISSION_SIG = "PAYPAL-TRANSMISSION-SIG"
CERT_URL = "PAYPAL-CERT-URL"

REQUIRED_HEADERS = (TRANSMISSION_ID, TRANSMISSION_TIME, AUTH_ALGO, TRANSMISSION_SIG, CERT_URL)

SUPPORTED_ALGORITHMS = {"SHA256withRSA": hashes.SHA256}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TransmissionHeaders:
    """The five PayPal headers that authenticate one webhook delivery."""

    transmission_id: str
    transmission_time: str
    auth_algo: str
    transmission_sig: str
    cert_url: str

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "TransmissionHeaders":
        """
        Extract the transmission headers, case-insensitively.

        Raises:
            UnauthorizedError: If any required header is missing or blank
        """
        normalized = {k.upper(): v for k, v in headers.items()}
        missing = [name for name in REQUIRED_HEADERS if not (normalized.get(name) or "").strip()]
        if missing:
            logger.warning("webhook_missing_headers", missing=missing)
            raise UnauthorizedError(f"Missing webhook headers: {', '.join(missing)}")
        return cls(
            transmission_id=normalized[TRANSMISSION_ID].strip(),
            transmission_time=normalized[TRANSMISSION_TIME].strip(),
            auth_algo=normalized[AUTH_ALGO].strip(),
            transmission_sig=normalized[TRANSMISSION_SIG].strip(),
            cert_url=normalized[CERT_URL].strip(),
        )


def signed_message(transmission: TransmissionHeaders, webhook_id: str, raw_body: bytes) -> bytes:
    """Build the exact byte string PayPal signs."""
    crc = zlib.crc32(raw_body) & 0xFFFFFFFF
    return (
        f"{transmission.transmission_id}|{transmission.transmission_time}|{webhook_id}|{crc}"
    ).encode("utf-8")


class WebhookVerifier:
    """
    Verifies PayPal webhook transmissions against the signing certificate.

    Certificates are cached per URL for the life of the process.
    """

    def __init__(
        self,
        transport: ResilientTransport,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.clock = clock
        self._certificates: Dict[str, x509.Certificate] = {}

    def _check_cert_url(self, cert_url: str) -> None:
        parsed = urlparse(cert_url)
        host = (parsed.hostname or "").lower()
        suffix = self.settings.paypal_cert_host_suffix.lower()
        if parsed.scheme != "https" or not (host.endswith(suffix) or host == suffix.lstrip(".")):
            logger.warning("webhook_cert_url_rejected", cert_url=cert_url)
            raise UnauthorizedError(f"Certificate URL not allowed: {cert_url}")

    async def _load_certificate(self, cert_url: str) -> x509.Certificate:
        cached = self._certificates.get(cert_url)
        if cached is not None:
            return cached

        try:
            response = await self.transport.request("GET", cert_url)
        except httpx.HTTPError as e:
            logger.error("webhook_cert_download_failed", cert_url=cert_url, error=str(e))
            raise ServerError(f"Could not download signing certificate: {e}") from e

        if not response.is_success:
            logger.error(
                "webhook_cert_download_failed",
                cert_url=cert_url,
                status_code=response.status_code,
            )
            raise ServerError(f"Certificate download returned {response.status_code}")

        try:
            certificate = x509.load_pem_x509_certificate(response.content)
        except ValueError as e:
            logger.warning("webhook_cert_unparseable", cert_url=cert_url)
            raise UnauthorizedError("Signing certificate is not valid PEM") from e

        self._certificates[cert_url] = certificate
        return certificate

    async def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> TransmissionHeaders:
        """
        Verify a webhook delivery.

        Args:
            raw_body: Request body exactly as received
            headers: Request headers

        Returns:
            TransmissionHeaders: The verified transmission headers

        Raises:
            UnauthorizedError: If headers are missing or the signature does not verify
            ServerError: If verification cannot be attempted (misconfiguration,
                certificate unavailable)
        """
        transmission = TransmissionHeaders.from_headers(headers)

        webhook_id = self.settings.paypal_webhook_id
        if not webhook_id:
            logger.error("webhook_id_not_configured")
            raise ServerError("PayPal webhook id is not configured")

        hash_algorithm = SUPPORTED_ALGORITHMS.get(transmission.auth_algo)
        if hash_algorithm is None:
            logger.warning("webhook_auth_algo_unsupported", auth_algo=transmission.auth_algo)
            raise UnauthorizedError(f"Unsupported auth algorithm: {transmission.auth_algo}")

        self._check_cert_url(transmission.cert_url)
        certificate = await self._load_certificate(transmission.cert_url)

        now = self.clock()
        if not (certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc):
            logger.warning("webhook_cert_expired", cert_url=transmission.cert_url)
            raise UnauthorizedError("Signing certificate is not currently valid")

        public_key = certificate.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise UnauthorizedError("Signing certificate does not carry an RSA key")

        try:
            signature = base64.b64decode(transmission.transmission_sig, validate=True)
        except (binascii.Error, ValueError) as e:
            raise UnauthorizedError("Transmission signature is not base64") from e

        try:
            public_key.verify(
                signature,
                signed_message(transmission, webhook_id, raw_body),
                padding.PKCS1v15(),
                hash_algorithm(),
            )
        except InvalidSignature as e:
            logger.warning(
                "webhook_signature_invalid",
                transmission_id=transmission.transmission_id,
            )
            raise UnauthorizedError("Invalid webhook signature") from e

        logger.debug("webhook_signature_verified", transmission_id=transmission.transmission_id)
        return transmission
