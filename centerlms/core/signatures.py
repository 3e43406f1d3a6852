import base64
import binascii
import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

logger = logging.getLogger(__name__)


def load_public_key(key: str):
    """Accept a full PEM or the bare base64 body the gateway dashboard shows."""
    key = key.strip()
    if not key.startswith("-----BEGIN"):
        key = f"-----BEGIN PUBLIC KEY-----\n{key}\n-----END PUBLIC KEY-----"
    return serialization.load_pem_public_key(key.encode("utf-8"))


def signed_message(timestamp: str, callback_url: str, body: bytes) -> bytes:
    return timestamp.encode("utf-8") + callback_url.encode("utf-8") + body


def verify_webhook_signature(
    public_key: str,
    timestamp: str,
    callback_url: str,
    body: bytes,
    signature_b64: str,
) -> bool:
    """RSA-SHA256 (PKCS#1 v1.5) over ``timestamp + callback_url + raw body``."""
    if not public_key:
        logger.error("webhook public key is not configured; rejecting payload")
        return False
    try:
        signature = base64.b64decode(signature_b64, validate=True)
        key = load_public_key(public_key)
        key.verify(
            signature,
            signed_message(timestamp, callback_url, body),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (InvalidSignature, UnsupportedAlgorithm, binascii.Error, ValueError, TypeError) as e:
        logger.warning("webhook signature rejected: %s", type(e).__name__)
        return False
    return True
