"""Stripe webhook router.

Endpoints:
    POST /api/stripe/webhook - receive Stripe events

A ``checkout.session.completed`` event carries the job id in the session
metadata (``jobId`` or ``job_id``). The job is marked paid locally when it
is known here, and the event is forwarded to the remote backend's webhook
candidates; if none accepts it, a minimal ``{"jobId": ...}`` is posted to
the remote mark-paid path instead.
"""
import json
import logging
from typing import Optional

import httpx
import stripe
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from reportgen.config import get_config
from reportgen.errors import EndpointsExhausted, JobNotFound
from reportgen.jobs.space_client import get_space_client
from reportgen.jobs.tracker import get_tracker
from reportgen.remote.endpoints import candidate_urls, try_candidates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["payments"])

CHECKOUT_COMPLETED = "checkout.session.completed"


def _parse_event(payload: bytes, signature: str) -> dict:
    """Verify (when a secret is configured) and decode the event.

    Raises:
        ValueError: If the payload is not valid JSON.
        stripe.SignatureVerificationError: If the signature does not match.
    """
    secret = get_config().secrets.stripe.webhook_secret
    if secret:
        stripe.Webhook.construct_event(payload, signature, secret)
    else:
        logger.warning("No STRIPE_WEBHOOK_SECRET configured - skipping signature verification")
    event = json.loads(payload)
    if not isinstance(event, dict):
        raise ValueError("Webhook payload is not a JSON object")
    return event


def _job_id_from(event: dict) -> Optional[str]:
    session = (event.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    return metadata.get("jobId") or metadata.get("job_id") or None


def _mark_local(job_id: Optional[str]) -> bool:
    tracker = get_tracker()
    if not job_id or tracker is None:
        return False
    try:
        tracker.mark_paid(job_id)
    except JobNotFound:
        return False
    logger.info(f"Job {job_id} marked as paid from Stripe webhook")
    return True


async def _forward(event: dict, job_id: Optional[str]) -> Optional[dict]:
    """Deliver the event to the remote backend. Returns None if nothing accepted it."""
    client = get_space_client()
    if client is None:
        logger.warning("Remote backend not configured; Stripe event not forwarded")
        return None

    remote = get_config().remote
    try:
        result = await try_candidates(
            client.http,
            "POST",
            candidate_urls(client.root_url, remote.webhook_paths),
            build_request=lambda: {"json": event, "headers": client.headers},
        )
        logger.info(f"Forwarded Stripe event to {result.endpoint}")
        return {"ok": True, "forwardedTo": result.endpoint}
    except EndpointsExhausted:
        logger.warning("No remote webhook endpoint accepted the Stripe event")

    if not job_id:
        return None

    fallback = client.url(remote.mark_paid_path)
    try:
        response = await client.http.post(fallback, json={"jobId": job_id}, headers=client.headers)
    except httpx.HTTPError as e:
        logger.warning(f"Fallback mark-paid failed: {e}")
        return None
    if not response.is_success:
        logger.warning(f"Fallback mark-paid answered {response.status_code}")
        return None
    logger.info(f"Marked job {job_id} paid via {fallback}")
    return {"ok": True, "markedVia": fallback}


@router.post("/webhook")
async def stripe_webhook(request: Request):
    """Handle a Stripe webhook delivery.

    Returns:
        ``{"received": true}`` for events other than a completed checkout;
        for a completed checkout, where it was delivered, or 502 when neither
        the remote backend nor the local tracker accepted it.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    try:
        event = _parse_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error(f"Stripe webhook rejected: {e}")
        return JSONResponse({"error": f"Webhook Error: {e}"}, status_code=400)

    if event.get("type") != CHECKOUT_COMPLETED:
        return {"received": True}

    job_id = _job_id_from(event)
    logger.info(f"Stripe checkout completed for job {job_id}")

    marked_locally = _mark_local(job_id)
    delivered = await _forward(event, job_id)
    if delivered is not None:
        return {**delivered, "markedLocally": marked_locally}
    if marked_locally:
        return {"ok": True, "markedLocally": True}

    raise EndpointsExhausted(
        "Webhook received, but could not forward it to the remote backend.",
        get_config().remote.webhook_paths,
    )
