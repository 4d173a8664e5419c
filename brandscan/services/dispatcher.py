"""Publisher and signature checks for the at-least-once dispatch relay.

Messages are published to a QStash-compatible relay which delivers them back
to this service's webhook routes, retrying until it gets a 2xx. Deliveries
carry an ``Upstash-Signature`` header: an HS256 JWT issued by ``Upstash``,
signed with the current or the next signing key (key rotation), whose ``sub``
is the destination URL and whose ``body`` claim is the base64url SHA-256 of
the raw body.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx
import jwt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from brandscan.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Upstash-Signature"
SIGNATURE_ISSUER = "Upstash"

PROCESS_PATH = "/webhooks/process-analysis"
RESUME_PATH = "/webhooks/resume-analysis"


class DispatchError(Exception):
    """Message could not be handed to the relay."""


def encode_body(body: Dict[str, Any]) -> bytes:
    return json.dumps(body, sort_keys=True, separators=(",", ":")).encode()


def body_hash(raw_body: bytes) -> str:
    """Unpadded base64url SHA-256 of a raw body, as carried in the ``body`` claim."""
    return base64.urlsafe_b64encode(hashlib.sha256(raw_body).digest()).decode().rstrip("=")


def _decode_claims(signature: str, key: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(
            signature,
            key,
            algorithms=["HS256"],
            issuer=SIGNATURE_ISSUER,
            leeway=settings.DISPATCH_CLOCK_TOLERANCE,
            options={"require": ["iss", "sub", "exp", "nbf", "body"]},
        )
    except jwt.InvalidTokenError as e:
        logger.debug(f"Signature rejected by one signing key: {e}")
        return None


def verify_signature(raw_body: bytes, signature: Optional[str], url: str) -> bool:
    """
    Check a relay delivery signature.

    Args:
        raw_body: Request body exactly as received
        signature: ``Upstash-Signature`` header value
        url: Public URL the message was published to

    Returns:
        True when the token verifies under the current or the next signing
        key and its ``sub`` and ``body`` claims match this delivery
    """
    if not signature:
        return False
    keys = [k for k in (settings.DISPATCH_SIGNING_KEY, settings.DISPATCH_NEXT_SIGNING_KEY) if k]
    if not keys:
        logger.error("No dispatch signing key configured; rejecting delivery")
        return False

    for key in keys:
        claims = _decode_claims(signature, key)
        if claims is None:
            continue
        if claims["sub"] != url:
            logger.warning(f"Signature issued for {claims['sub']}, not {url}")
            return False
        if not hmac.compare_digest(str(claims["body"]).rstrip("="), body_hash(raw_body)):
            logger.warning(f"Signature body hash does not match the delivery to {url}")
            return False
        return True
    return False


class HttpDispatcher:
    """Publishes webhook messages through the relay's publish API."""

    def __init__(self, base_url: str = None, publish_url: str = None, token: str = None):
        self.base_url = (base_url or settings.BASE_URL).rstrip("/")
        self.publish_url = (publish_url or settings.DISPATCH_PUBLISH_URL).rstrip("/")
        self.token = token if token is not None else settings.DISPATCH_TOKEN

    def _build_headers(self, dedup_id: Optional[str]) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Upstash-Retries": str(settings.DISPATCH_RETRIES),
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if dedup_id:
            headers["Upstash-Deduplication-Id"] = dedup_id
        return headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    def _post(self, destination: str, raw_body: bytes, dedup_id: Optional[str]) -> str:
        with httpx.Client(timeout=settings.DISPATCH_TIMEOUT) as client:
            response = client.post(
                f"{self.publish_url}/{destination}",
                headers=self._build_headers(dedup_id),
                content=raw_body,
            )
            response.raise_for_status()
            return response.json().get("messageId", "")

    def publish(self, path: str, body: Dict[str, Any], dedup_id: Optional[str] = None) -> str:
        """
        Publish a message for asynchronous delivery to ``path`` on this service.

        Args:
            path: Webhook route, e.g. PROCESS_PATH
            body: JSON-serializable message body
            dedup_id: Optional relay-side deduplication id

        Returns:
            Relay message id

        Raises:
            DispatchError: If the relay could not be reached after retries
        """
        destination = f"{self.base_url}{path}"
        raw_body = encode_body(body)
        try:
            message_id = self._post(destination, raw_body, dedup_id)
        except httpx.HTTPError as e:
            raise DispatchError(f"Failed to publish to {destination}: {e}") from e

        logger.info(f"Published message {message_id} to {path}")
        return message_id

    def publish_pair(self, run_id: str, current_pair: Dict[str, str], remaining_pairs: list) -> str:
        body = {
            "run_id": run_id,
            "current_pair": current_pair,
            "remaining_pairs": remaining_pairs,
        }
        dedup_id = f"analysis-{run_id}-{current_pair['model']}-{current_pair['stage']}-{int(time.time())}"
        return self.publish(PROCESS_PATH, body, dedup_id=dedup_id)

    def publish_resume(self, run_id: str) -> str:
        return self.publish(RESUME_PATH, {"run_id": run_id})
