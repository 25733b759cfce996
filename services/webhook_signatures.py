# services/webhook_signatures.py
"""
Webhook signature verification, one verifier per provider.

Each verifier checks the raw request body (bytes, exactly as received)
against the provider's own secret and raises SignatureVerificationError on
any mismatch, missing header or missing secret. Nothing is parsed before
verification succeeds.

Header lookups are case-insensitive: callers pass lower-cased header names.
"""
import base64
import binascii
import hashlib
import hmac
import zlib
from typing import Callable, Mapping, Optional
from urllib.parse import urlparse

import requests
import stripe
import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from config import Settings
from exceptions import SignatureVerificationError
from models.enums import PaymentProvider

logger = structlog.get_logger(__name__)

PAYPAL_CERT_HOST_SUFFIX = ".paypal.com"
PAYPAL_AUTH_ALGO = "SHA256withRSA"

# Downloads a PEM certificate given its URL
CertificateFetcher = Callable[[str], bytes]


class StripeSignatureVerifier:
     """Stripe-Signature: t=<ts>,v1=<hex hmac of "<ts>.<body>">, checked by the Stripe SDK."""
     header = "stripe-signature"

     def __init__(self, secret: Optional[str], tolerance: int = 300):
          self.secret = secret
          self.tolerance = tolerance

     def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
          if not self.secret:
               raise SignatureVerificationError("Stripe webhook secret is not configured")
          signature = headers.get(self.header)
          if not signature:
               raise SignatureVerificationError("Missing Stripe-Signature header")
          try:
               stripe.WebhookSignature.verify_header(
                    body.decode("utf-8"), signature, self.secret, tolerance=self.tolerance
               )
          except stripe.SignatureVerificationError as e:
               raise SignatureVerificationError(f"Invalid Stripe signature: {e.user_message or e}") from e
          except UnicodeDecodeError as e:
               raise SignatureVerificationError("Stripe payload is not UTF-8") from e


def fetch_paypal_certificate(url: str, timeout: float = 10.0) -> bytes:
     response = requests.get(url, timeout=timeout)
     response.raise_for_status()
     return response.content


class PayPalSignatureVerifier:
     """
     PayPal transmission signature.

     PayPal signs "<transmission id>|<transmission time>|<webhook id>|<crc32 of body>"
     with the private key of the certificate published at paypal-cert-url.
     """

     def __init__(
          self,
          webhook_id: Optional[str],
          cert_fetcher: CertificateFetcher = fetch_paypal_certificate,
     ):
          self.webhook_id = webhook_id
          self.cert_fetcher = cert_fetcher

     @staticmethod
     def signed_message(transmission_id: str, transmission_time: str, webhook_id: str, body: bytes) -> bytes:
          crc = zlib.crc32(body) & 0xFFFFFFFF
          return f"{transmission_id}|{transmission_time}|{webhook_id}|{crc}".encode("utf-8")

     def _certificate(self, cert_url: str) -> x509.Certificate:
          parsed = urlparse(cert_url)
          host = parsed.hostname or ""
          if parsed.scheme != "https" or not host.endswith(PAYPAL_CERT_HOST_SUFFIX):
               raise SignatureVerificationError(f"Untrusted PayPal certificate URL: {cert_url}")
          try:
               pem = self.cert_fetcher(cert_url)
          except requests.RequestException as e:
               raise SignatureVerificationError("PayPal certificate could not be fetched") from e
          try:
               return x509.load_pem_x509_certificate(pem)
          except ValueError as e:
               raise SignatureVerificationError("PayPal certificate is malformed") from e

     def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
          if not self.webhook_id:
               raise SignatureVerificationError("PayPal webhook id is not configured")

          transmission_id = headers.get("paypal-transmission-id")
          transmission_time = headers.get("paypal-transmission-time")
          signature = headers.get("paypal-transmission-sig")
          cert_url = headers.get("paypal-cert-url")
          if not all((transmission_id, transmission_time, signature, cert_url)):
               raise SignatureVerificationError("Missing PayPal transmission headers")
          if headers.get("paypal-auth-algo", PAYPAL_AUTH_ALGO) != PAYPAL_AUTH_ALGO:
               raise SignatureVerificationError("Unsupported PayPal signature algorithm")

          certificate = self._certificate(cert_url)
          message = self.signed_message(transmission_id, transmission_time, self.webhook_id, body)
          try:
               certificate.public_key().verify(
                    base64.b64decode(signature),
                    message,
                    padding.PKCS1v15(),
                    hashes.SHA256(),
               )
          except (InvalidSignature, binascii.Error, ValueError) as e:
               raise SignatureVerificationError("Invalid PayPal transmission signature") from e


class HmacSignatureVerifier:
     """HMAC-SHA256 of (prefix + body), hex or base64 encoded in one header."""

     def __init__(
          self,
          provider: PaymentProvider,
          secret: Optional[str],
          header: str,
          encoding: str = "hex",
          prefix: str = "",
     ):
          self.provider = provider
          self.secret = secret
          self.header = header
          self.encoding = encoding
          self.prefix = prefix

     def expected_signature(self, body: bytes) -> str:
          digest = hmac.new(
               self.secret.encode("utf-8"),
               self.prefix.encode("utf-8") + body,
               hashlib.sha256,
          ).digest()
          if self.encoding == "base64":
               return base64.b64encode(digest).decode("ascii")
          return digest.hex()

     def verify(self, body: bytes, headers: Mapping[str, str]) -> None:
          if not self.secret:
               raise SignatureVerificationError(f"{self.provider.value} webhook secret is not configured")
          received = (headers.get(self.header) or "").strip()
          if not received:
               raise SignatureVerificationError(f"Missing {self.header} header")
          if self.encoding == "hex":
               received = received.lower()
          if not hmac.compare_digest(self.expected_signature(body).encode("ascii"), received.encode("utf-8")):
               raise SignatureVerificationError(f"Invalid {self.provider.value} signature")


def get_signature_verifier(
     provider: PaymentProvider,
     settings: Settings,
     paypal_cert_fetcher: Optional[CertificateFetcher] = None,
):
     secrets = settings.webhook_secrets
     if provider == PaymentProvider.STRIPE:
          return StripeSignatureVerifier(secrets.stripe, settings.stripe_webhook_tolerance_seconds)
     if provider == PaymentProvider.PAYPAL:
          return PayPalSignatureVerifier(
               secrets.paypal_webhook_id,
               paypal_cert_fetcher or fetch_paypal_certificate,
          )
     if provider == PaymentProvider.SQUARE:
          if secrets.square_signature_key and not secrets.square_notification_url:
               logger.error("square_notification_url_missing")
          return HmacSignatureVerifier(
               provider,
               secrets.square_signature_key if secrets.square_notification_url else None,
               "x-square-hmacsha256-signature",
               encoding="base64",
               prefix=secrets.square_notification_url or "",
          )
     if provider == PaymentProvider.PAYPAY:
          return HmacSignatureVerifier(provider, secrets.paypay, "x-paypay-signature")
     if provider == PaymentProvider.FINCODE:
          return HmacSignatureVerifier(provider, secrets.fincode, "x-fincode-signature")
     raise ValueError(f"Unsupported provider: {provider}")
