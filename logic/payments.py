# backend/logic/payments.py
import json
import logging

import stripe
from sqlalchemy.orm import Session

from errors import NotFoundError, UnauthorizedError, UpstreamError
from models.user import User

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


def construct_event(payload: bytes, signature: str, secret: str) -> dict:
    """Verify the Stripe-Signature header and parse the event body."""
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise UpstreamError()
    if not signature:
        raise UnauthorizedError("Missing webhook signature")
    try:
        stripe.WebhookSignature.verify_header(
            payload, signature, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Webhook signature verification failed: %s", exc)
        raise UnauthorizedError("Invalid webhook signature")

    try:
        return json.loads(payload)
    except ValueError as exc:
        logger.warning("Webhook payload could not be parsed: %s", exc)
        raise UnauthorizedError("Invalid webhook payload")


def handle_event(db: Session, event: dict):
    """Apply a verified webhook event. Returns the updated user, if any."""
    event_type = event.get("type")
    if event_type != CHECKOUT_COMPLETED:
        logger.info("Unhandled event type %s", event_type)
        return None

    checkout = (event.get("data") or {}).get("object") or {}
    user_id = (checkout.get("metadata") or {}).get("user_id")
    if not user_id:
        logger.warning("No user id found in checkout session metadata")
        return None

    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    user.is_supporter = True
    db.commit()
    logger.info("User %s marked as supporter", user_id)
    return user
