"""
formkeeper.services.captcha — Cloudflare Turnstile verification
================================================================
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


async def verify_turnstile_token(
    token: str | None,
    secret: str | None,
    *,
    remote_ip: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Ask Cloudflare whether *token* is a valid Turnstile solution.

    A missing token or secret, a non-200 reply, or any transport or decode
    error counts as a failed verification.
    """
    if not token:
        return False
    if not secret:
        logger.error("Captcha required but TURNSTILE_SECRET is not set")
        return False

    data = {"secret": secret, "response": token}
    if remote_ip:
        data["remoteip"] = remote_ip

    transport = transport or httpx.AsyncHTTPTransport(retries=1)
    try:
        async with httpx.AsyncClient(timeout=10, transport=transport) as client:
            resp = await client.post(TURNSTILE_VERIFY_URL, data=data)
        if resp.status_code != 200:
            logger.warning("Turnstile verification returned HTTP %d", resp.status_code)
            return False
        payload = resp.json()
    except (httpx.HTTPError, ValueError):
        logger.exception("Turnstile verification request failed")
        return False

    if not payload.get("success"):
        logger.info("Turnstile rejected token: %s", payload.get("error-codes"))
        return False
    return True
