"""
Stripe Routes
Webhook intake, OTP-gated billing portal access and an admin lookup.
"""
import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.config import Settings, get_settings
from app.db.session import get_db
from app.dependencies.admin import require_admin_token
from app.models.license import License
from app.schemas.license import LicenseBySubscriptionResponse
from app.schemas.stripe import PortalSessionRequest, RequestOtpRequest
from app.services.otp_flow import LicenseFlowError, redeem_otp_for_portal_session, request_otp
from app.services.stripe_events import process_event

logger = logging.getLogger(__name__)

router = APIRouter()


def _flow_error(e: LicenseFlowError) -> JSONResponse:
    return JSONResponse(status_code=e.status_code, content={"ok": False, "reason": e.reason})


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Stripe webhook. The raw body is needed for signature verification.
    Once the signature checks out we always answer 200 so Stripe does not
    keep retrying an event we cannot process; failures are logged instead.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not settings.stripe_webhook_secret or not sig_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook not configured"
        )

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            sig_header,
            settings.stripe_webhook_secret,
            stripe.Webhook.DEFAULT_TOLERANCE,
        )
        event = json.loads(payload)
    except (stripe.SignatureVerificationError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature"
        )

    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload"
        )

    # Database, Stripe and Resend calls below are blocking
    return await run_in_threadpool(_process_webhook_event, db, settings, event)


def _process_webhook_event(db: Session, settings: Settings, event: dict):
    try:
        process_event(db, settings, event)
    except Exception:
        logger.exception(
            "Stripe webhook processing failed for event %s (%s)",
            event.get("id"), event.get("type"),
        )
        db.rollback()

    return {"received": True}


@router.post("/request-otp")
def request_otp_route(
    request: RequestOtpRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Email a one-time code to the address on file for the license."""
    try:
        request_otp(db, settings, request.licenseKey)
    except LicenseFlowError as e:
        return _flow_error(e)
    return {"ok": True}


@router.post("/portal-session")
def portal_session(
    request: PortalSessionRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Exchange license key + one-time code for a Stripe billing portal URL."""
    try:
        url = redeem_otp_for_portal_session(db, settings, request.licenseKey, request.code)
    except LicenseFlowError as e:
        return _flow_error(e)
    return {"ok": True, "url": url}


@router.get(
    "/license/by-subscription/{subscription_id}",
    response_model=LicenseBySubscriptionResponse,
    dependencies=[Depends(require_admin_token)],
)
def license_by_subscription(
    subscription_id: str,
    db: Session = Depends(get_db),
):
    try:
        license = (
            db.query(License)
            .filter(License.stripe_subscription_id == subscription_id)
            .first()
        )
        if not license:
            return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Not found"})

        return {
            "licenseKey": license.license_key,
            "status": license.status.value,
            "boundDomains": [d.hostname for d in license.domains],
        }
    except Exception:
        logger.exception("License lookup failed for subscription %s", subscription_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Lookup failed"},
        )
