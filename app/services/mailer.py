"""
Transactional emails (one-time codes, license keys) through the Resend API.
Unlike billing receipts these must not fail silently: every failure raises
EmailDeliveryError so callers can revert their claim or report SERVER_ERROR.
"""
import logging

import requests

from app.core.config import Settings

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
# (connect, read) seconds; a slow mail API must not hold the request open
SEND_TIMEOUT = (10, 15)

SCRIPT_CDN_URL = "https://cdn.squarepro.co.uk/squarepro.min.js"


class EmailDeliveryError(Exception):
    """The email provider did not accept the message."""


def _send_email(settings: Settings, to_email: str, subject: str, text: str) -> str:
    if not settings.resend_api_key:
        raise EmailDeliveryError("RESEND_API_KEY is not set")

    headers = {
        "Authorization": f"Bearer {settings.resend_api_key}",
        "Content-Type": "application/json",
    }
    payload = {
        "from": settings.email_from,
        "to": [to_email],
        "subject": subject,
        "text": text,
    }

    try:
        response = requests.post(RESEND_URL, json=payload, headers=headers, timeout=SEND_TIMEOUT)
    except requests.exceptions.RequestException as e:
        raise EmailDeliveryError(f"Resend request failed: {e}") from e

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.ok:
        message = None
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
        raise EmailDeliveryError(message or f"Resend API failed ({response.status_code})")

    email_id = data.get("id", "") if isinstance(data, dict) else ""
    logger.info("[mailer] Email accepted by Resend id=%s", email_id)
    return email_id


def send_otp_email(settings: Settings, to_email: str, code: str) -> None:
    _send_email(
        settings,
        to_email,
        "Your SquarePro verification code",
        f"Your SquarePro code is: {code}\n\n"
        f"It expires in {settings.otp_ttl_minutes} minutes.",
    )


def send_license_key_email(settings: Settings, to_email: str, license_key: str) -> None:
    snippet = f'<script src="{SCRIPT_CDN_URL}" data-squarepro-key="{license_key}"></script>'
    text = (
        "Here's your SquarePro license key:\n\n"
        f"{license_key}\n\n"
        "Install (Squarespace -> Settings -> Advanced -> Code Injection -> HEADER):\n\n"
        f"{snippet}\n\n"
        "Activation:\n"
        "1) Load once on yoursite.squarespace.com (preview domain)\n"
        "2) Load once on your live domain\n"
        f"Your license will bind to up to {settings.default_max_domains} domains.\n"
    )
    _send_email(settings, to_email, "Your SquarePro license key", text)
