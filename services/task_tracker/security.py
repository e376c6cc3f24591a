"""GitHub webhook signature handling (``X-Hub-Signature-256``)."""

import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(raw_body: Union[str, bytes], secret: Union[str, bytes]) -> str:
    """Header value GitHub would send for ``raw_body``."""
    digest = hmac.new(_as_bytes(secret), _as_bytes(raw_body), hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(
    raw_body: bytes, signature: Optional[str], secret: Optional[Union[str, bytes]]
) -> bool:
    """
    Check ``signature`` against an HMAC-SHA256 of the exact bytes received.

    Fails closed: an unset secret rejects every delivery. The comparison is
    constant time.
    """
    if not secret:
        logger.error("GitHub webhook secret is not set; rejecting delivery")
        return False
    if not signature:
        return False

    expected = sign_payload(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
