"""
Request authentication for the mirror server.

Webhook deliveries are authenticated with GitHub's HMAC signature header;
the manual trigger endpoint with a static bearer token.
"""

import hashlib
import hmac
import os

from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="

# auto_error=False: a missing header is only an error when a token is configured
security = HTTPBearer(auto_error=False)


def get_webhook_secret() -> str | None:
    """
    Get the webhook secret from the environment.

    Environment variables:
    - MIRROR_WEBHOOK_SECRET: Secret configured on the GitHub webhook.
      When unset, deliveries are accepted without a signature.
    """
    return os.environ.get("MIRROR_WEBHOOK_SECRET") or None


def get_api_token() -> str | None:
    """
    Get the manual trigger token from the environment.

    Environment variables:
    - MIRROR_API_TOKEN: Bearer token required by POST /runs.
      When unset, the endpoint is open.
    """
    return os.environ.get("MIRROR_API_TOKEN") or None


def sign_payload(secret: str, body: bytes) -> str:
    """
    Compute the X-Hub-Signature-256 value GitHub sends for a body.

    Args:
        secret: Webhook secret
        body: Raw request body

    Returns:
        Signature in the form "sha256=<hex digest>"

    Example:
        >>> sign_payload("s3cret", b"{}").startswith("sha256=")
        True
    """
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """
    Check a webhook signature in constant time.

    Args:
        secret: Webhook secret
        body: Raw request body
        signature: Value of the X-Hub-Signature-256 header

    Returns:
        True if the signature matches the body
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)


async def require_api_token(
    credentials: HTTPAuthorizationCredentials | None = Security(security),
) -> None:
    """
    FastAPI dependency enforcing the manual trigger token.

    Raises:
        HTTPException: 401 if a token is configured and the request
                       does not carry it
    """
    expected = get_api_token()
    if expected is None:
        return

    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API token",
            headers={"WWW-Authenticate": "Bearer"},
        )
