"""
Keep local licenses in step with Stripe subscriptions and deliver each
license key by email once.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.models.license import License, LicenseStatus
from app.services.mailer import send_license_key_email
from app.utils.license_keys import generate_license_key

logger = logging.getLogger(__name__)

MAX_KEY_ATTEMPTS = 5

_STRIPE_STATUS_MAP = {
    "active": LicenseStatus.ACTIVE,
    "trialing": LicenseStatus.TRIALING,
    "past_due": LicenseStatus.PAST_DUE,
    "canceled": LicenseStatus.CANCELED,
    "unpaid": LicenseStatus.CANCELED,
}


def map_stripe_subscription_status(status: Optional[str]) -> LicenseStatus:
    """incomplete, incomplete_expired, paused and anything unknown map to INCOMPLETE."""
    return _STRIPE_STATUS_MAP.get(status or "", LicenseStatus.INCOMPLETE)


def _clean_email(email: Optional[str]) -> Optional[str]:
    email = (email or "").strip().lower()
    return email or None


def _subscription_has_license(db: Session, stripe_subscription_id: str) -> bool:
    return (
        db.query(License.id)
        .filter(License.stripe_subscription_id == stripe_subscription_id)
        .first()
    ) is not None


def _license_key_taken(db: Session, license_key: str) -> bool:
    return db.query(License.id).filter(License.license_key == license_key).first() is not None


def _apply_update(
    license: License,
    stripe_customer_id: str,
    status: LicenseStatus,
    email: Optional[str],
) -> None:
    license.stripe_customer_id = stripe_customer_id
    license.status = status
    # First write wins: an email already on file is never replaced
    if email and not license.customer_email:
        license.customer_email = email


def ensure_license_for_subscription(
    db: Session,
    settings: Settings,
    stripe_subscription_id: str,
    stripe_customer_id: str,
    status: LicenseStatus,
    email: Optional[str] = None,
) -> License:
    """
    Create the license for a subscription on first sight, otherwise update it.

    Creation races are settled by the unique index on stripe_subscription_id:
    the loser rolls back, re-reads the winner's row and updates it. A conflict
    on the license key retries with a fresh key, up to MAX_KEY_ATTEMPTS.
    Any other integrity error is re-raised.
    """
    email = _clean_email(email)

    key_attempts = 0
    while True:
        existing = (
            db.query(License)
            .filter(License.stripe_subscription_id == stripe_subscription_id)
            .first()
        )
        if existing:
            _apply_update(existing, stripe_customer_id, status, email)
            db.commit()
            db.refresh(existing)
            return existing

        key_attempts += 1
        license_key = generate_license_key()
        license = License(
            license_key=license_key,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            status=status,
            customer_email=email,
            max_domains=settings.default_max_domains,
        )
        db.add(license)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if _subscription_has_license(db, stripe_subscription_id):
                logger.info(
                    "License insert for subscription %s lost a race; re-reading",
                    stripe_subscription_id,
                )
                continue
            if _license_key_taken(db, license_key) and key_attempts < MAX_KEY_ATTEMPTS:
                logger.warning(
                    "License key collision for subscription %s (attempt %s); retrying",
                    stripe_subscription_id, key_attempts,
                )
                continue
            raise

        db.refresh(license)
        logger.info(
            "Created license %s for subscription %s (status=%s)",
            license.id, stripe_subscription_id, status.value,
        )
        return license


def deliver_license_key_if_needed(
    db: Session,
    settings: Settings,
    license_id: int,
    email: str,
    license_key: str,
) -> bool:
    """
    Email the license key unless it was already claimed.

    The claim is a single conditional UPDATE on key_sent_at IS NULL, so of
    any number of concurrent callers exactly one gets a row back and sends.
    If the send fails the claim is released and the error re-raised, so a
    later event (e.g. invoice.paid) can try again.

    Returns True when this call sent the email.
    """
    claimed = (
        db.query(License)
        .filter(License.id == license_id, License.key_sent_at.is_(None))
        .update(
            {
                License.key_sent_at: datetime.utcnow(),
                License.customer_email: func.coalesce(License.customer_email, email),
            },
            synchronize_session=False,
        )
    )
    db.commit()

    if claimed == 0:
        logger.info("License key for license %s already claimed; not sending", license_id)
        return False

    try:
        send_license_key_email(settings, email, license_key)
    except Exception:
        logger.exception("License key email failed for license %s; releasing claim", license_id)
        db.rollback()
        db.query(License).filter(License.id == license_id).update(
            {License.key_sent_at: None},
            synchronize_session=False,
        )
        db.commit()
        raise

    logger.info("License key email sent for license %s", license_id)
    return True


def reconcile_and_deliver(
    db: Session,
    settings: Settings,
    stripe_subscription_id: str,
    stripe_customer_id: str,
    status: LicenseStatus,
    email: Optional[str] = None,
) -> License:
    """Shared tail of every subscription-bearing webhook event."""
    license = ensure_license_for_subscription(
        db,
        settings,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
        status=status,
        email=email,
    )

    # The address on file wins over the one carried by this event
    recipient = license.customer_email or _clean_email(email)
    if recipient and license.key_sent_at is None:
        deliver_license_key_if_needed(db, settings, license.id, recipient, license.license_key)
    return license
