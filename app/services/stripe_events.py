"""
Stripe webhook event handlers.
Each handler takes the parsed event dict (signature already verified) and
reconciles the matching license. Subscription status is always re-read from
Stripe rather than trusted from the event body.
"""
import logging
from typing import Any, Callable, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.models.license import License, LicenseStatus
from app.services.license_sync import map_stripe_subscription_status, reconcile_and_deliver

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> Optional[str]:
    """Stripe sends references either as an id string or as an expanded object."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    sub_id = _object_id(invoice.get("subscription"))
    if sub_id:
        return sub_id
    # Newer API versions nest it under parent.subscription_details
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _object_id(details.get("subscription"))


def fetch_customer_email(settings: Settings, customer_id: Optional[str]) -> Optional[str]:
    """Best effort; any Stripe error yields None."""
    if not customer_id:
        return None
    try:
        customer = stripe.Customer.retrieve(customer_id, api_key=settings.stripe_secret_key)
    except Exception as e:
        logger.warning("Could not fetch email for customer %s: %s", customer_id, e)
        return None
    if getattr(customer, "deleted", False):
        return None
    return getattr(customer, "email", None)


def handle_checkout_completed(db: Session, settings: Settings, event: Dict[str, Any]) -> None:
    session = event["data"]["object"]
    subscription_id = _object_id(session.get("subscription"))
    customer_id = _object_id(session.get("customer"))
    if not subscription_id or not customer_id:
        logger.info("Checkout session %s has no subscription/customer; ignoring", session.get("id"))
        return

    details = session.get("customer_details") or {}
    email = details.get("email") or session.get("customer_email")

    subscription = stripe.Subscription.retrieve(subscription_id, api_key=settings.stripe_secret_key)
    if not email:
        email = fetch_customer_email(settings, customer_id)

    reconcile_and_deliver(
        db,
        settings,
        stripe_subscription_id=subscription.id,
        stripe_customer_id=customer_id,
        status=map_stripe_subscription_status(subscription.status),
        email=email,
    )


def handle_subscription_changed(db: Session, settings: Settings, event: Dict[str, Any]) -> None:
    """customer.subscription.updated and customer.subscription.deleted."""
    subscription = event["data"]["object"]
    customer_id = _object_id(subscription.get("customer"))
    if not subscription.get("id") or not customer_id:
        return

    email = fetch_customer_email(settings, customer_id)
    reconcile_and_deliver(
        db,
        settings,
        stripe_subscription_id=subscription["id"],
        stripe_customer_id=customer_id,
        status=map_stripe_subscription_status(subscription.get("status")),
        email=email,
    )


def handle_invoice_paid(db: Session, settings: Settings, event: Dict[str, Any]) -> None:
    """
    Backstop for license issuance: even if checkout and subscription events
    were missed, a paid invoice creates the license and sends the key.
    """
    invoice = event["data"]["object"]
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return

    subscription = stripe.Subscription.retrieve(subscription_id, api_key=settings.stripe_secret_key)
    customer_id = _object_id(subscription.customer) or _object_id(invoice.get("customer"))
    if not customer_id:
        logger.warning("Subscription %s has no customer; skipping", subscription_id)
        return

    email = fetch_customer_email(settings, customer_id) or invoice.get("customer_email")
    reconcile_and_deliver(
        db,
        settings,
        stripe_subscription_id=subscription.id,
        stripe_customer_id=customer_id,
        status=map_stripe_subscription_status(subscription.status),
        email=email,
    )


def handle_invoice_payment_failed(db: Session, settings: Settings, event: Dict[str, Any]) -> None:
    invoice = event["data"]["object"]
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        return

    updated = (
        db.query(License)
        .filter(License.stripe_subscription_id == subscription_id)
        .update({License.status: LicenseStatus.PAST_DUE}, synchronize_session=False)
    )
    db.commit()
    logger.info("Marked %s license(s) PAST_DUE for subscription %s", updated, subscription_id)


EVENT_HANDLERS: Dict[str, Callable[[Session, Settings, Dict[str, Any]], None]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_changed,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


def process_event(db: Session, settings: Settings, event: Dict[str, Any]) -> bool:
    """Dispatch by event type. Returns False for event types we ignore."""
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug("Ignoring Stripe event type %s", event_type)
        return False
    logger.info("Processing Stripe event %s (%s)", event.get("id"), event_type)
    handler(db, settings, event)
    return True
