"""
One-time-code access to the Stripe billing portal.

A license holder proves control of the email on file by receiving a
six digit code, then trades license key + code for a portal session URL.
The email address itself is never returned to the caller.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.models.email_otp import EmailOtp
from app.models.license import License
from app.services.mailer import send_otp_email
from app.utils.otp import generate_otp_code, hash_code, normalize_email

logger = logging.getLogger(__name__)

MISSING_LICENSE_KEY = "MISSING_LICENSE_KEY"
MISSING_OTP = "MISSING_OTP"
INVALID_KEY = "INVALID_KEY"
NO_EMAIL_ON_FILE = "NO_EMAIL_ON_FILE"
INVALID_OTP = "INVALID_OTP"
CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
SERVER_ERROR = "SERVER_ERROR"

_STATUS_CODES = {
    MISSING_LICENSE_KEY: 400,
    MISSING_OTP: 400,
    NO_EMAIL_ON_FILE: 400,
    INVALID_OTP: 401,
    INVALID_KEY: 404,
    CUSTOMER_NOT_FOUND: 404,
    SERVER_ERROR: 500,
}


class LicenseFlowError(Exception):
    """A client-visible denial carrying a reason code."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code or _STATUS_CODES.get(reason, 400)


def _license_email(db: Session, license_key: str):
    license = db.query(License).filter(License.license_key == license_key).first()
    if not license:
        raise LicenseFlowError(INVALID_KEY)

    email = normalize_email(license.customer_email)
    if not email or "@" not in email:
        raise LicenseFlowError(NO_EMAIL_ON_FILE)
    return license, email


def request_otp(db: Session, settings: Settings, license_key: str) -> None:
    """
    Send a fresh code to the email on file for `license_key`.
    Any earlier live code for that email stops working.
    """
    license_key = (license_key or "").strip()
    if not license_key:
        raise LicenseFlowError(MISSING_LICENSE_KEY)

    try:
        license, email = _license_email(db, license_key)

        code = generate_otp_code()
        code_hash = hash_code(email, code, settings.otp_secret)
        now = datetime.utcnow()

        # Supersede earlier live codes
        db.query(EmailOtp).filter(
            EmailOtp.email == email,
            EmailOtp.used_at.is_(None),
            EmailOtp.expires_at > now,
        ).update({EmailOtp.used_at: now}, synchronize_session=False)

        db.add(EmailOtp(
            email=email,
            code_hash=code_hash,
            created_at=now,
            expires_at=now + timedelta(minutes=settings.otp_ttl_minutes),
        ))
        db.commit()

        send_otp_email(settings, email, code)
    except LicenseFlowError:
        raise
    except Exception as e:
        db.rollback()
        logger.exception("OTP request failed")
        raise LicenseFlowError(SERVER_ERROR) from e

    logger.info("OTP sent for license %s", license.id)


def _consume_otp(db: Session, settings: Settings, email: str, code: str) -> None:
    now = datetime.utcnow()
    candidate = hash_code(email, code, settings.otp_secret)

    otp = (
        db.query(EmailOtp)
        .filter(
            EmailOtp.email == email,
            EmailOtp.code_hash == candidate,
            EmailOtp.used_at.is_(None),
            EmailOtp.expires_at > now,
        )
        .order_by(EmailOtp.created_at.desc(), EmailOtp.id.desc())
        .first()
    )
    if not otp:
        raise LicenseFlowError(INVALID_OTP)

    # Conditional so two concurrent redemptions cannot both succeed
    consumed = (
        db.query(EmailOtp)
        .filter(EmailOtp.id == otp.id, EmailOtp.used_at.is_(None))
        .update({EmailOtp.used_at: now}, synchronize_session=False)
    )
    db.commit()
    if consumed == 0:
        raise LicenseFlowError(INVALID_OTP)


def redeem_otp_for_portal_session(db: Session, settings: Settings, license_key: str, code: str) -> str:
    """Consume the code and return a Stripe billing portal URL."""
    license_key = (license_key or "").strip()
    code = (code or "").strip()
    if not license_key:
        raise LicenseFlowError(MISSING_LICENSE_KEY)
    if not code:
        raise LicenseFlowError(MISSING_OTP)

    try:
        license, email = _license_email(db, license_key)
        _consume_otp(db, settings, email, code)

        if not license.stripe_customer_id:
            raise LicenseFlowError(CUSTOMER_NOT_FOUND)

        session = stripe.billing_portal.Session.create(
            customer=license.stripe_customer_id,
            return_url=settings.app_base_url,
            api_key=settings.stripe_secret_key,
        )
    except LicenseFlowError:
        raise
    except Exception as e:
        db.rollback()
        logger.exception("Portal session creation failed")
        raise LicenseFlowError(SERVER_ERROR) from e

    logger.info("Portal session created for license %s", license.id)
    return session.url
