# Purpose: Shared encoding, time and certificate helpers for the payments sandbox.
# Not for production use; intended only as a reference sandbox.

import base64
import hashlib
from datetime import datetime, timezone
from urllib.parse import unquote

from cryptography import x509
from cryptography.hazmat.primitives import serialization


def bytes_to_base64url(data: bytes) -> str:
    """Helper to convert bytes to base64url encoding as required by JWK."""
    return base64.urlsafe_b64encode(data).rstrip(b'=').decode('ascii')


def utc_now():
    return datetime.now(timezone.utc)


def format_datetime(moment):
    """Formats a datetime as UTC ISO-8601 with milliseconds, e.g. 2026-01-01T12:00:00.000Z."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def certificate_thumbprint(cert_pem):
    """Calculates the x5t#S256 thumbprint (SHA-256 of the DER certificate, base64url).

    Accepts the PEM as bytes or str. URL-escaped PEM (as forwarded by a TLS
    terminator in a header) is unescaped first.
    """
    if isinstance(cert_pem, bytes):
        cert_pem = cert_pem.decode('ascii')
    if '%' in cert_pem:
        cert_pem = unquote(cert_pem)
    cert = x509.load_pem_x509_certificate(cert_pem.encode('ascii'))
    cert_der = cert.public_bytes(serialization.Encoding.DER)
    return bytes_to_base64url(hashlib.sha256(cert_der).digest())
