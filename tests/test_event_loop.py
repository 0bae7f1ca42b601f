"""
Slow provider calls (Resend, Stripe) run off the event loop, so other
requests keep being served while one of them waits.
"""
import asyncio
import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest.mock import patch

import httpx

from app.main import app

SLOW_CALL_SECONDS = 1.5


def _slow(result=None):
    def _call(*args, **kwargs):
        time.sleep(SLOW_CALL_SECONDS)
        return result
    return _call


async def _health_while(send_slow_request):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        started = time.monotonic()
        slow = asyncio.create_task(send_slow_request(ac))
        await asyncio.sleep(0.2)

        health = await ac.get("/health")
        elapsed = time.monotonic() - started
        finished_first = not slow.done()

        slow_response = await slow
    return health, elapsed, finished_first, slow_response


def _assert_health_not_blocked(result):
    health, elapsed, finished_first, _ = result
    assert health.json() == {"ok": True}
    assert finished_first
    assert elapsed < SLOW_CALL_SECONDS - 0.5


def test_slow_otp_email_does_not_block_other_requests(client, make_license):
    license = make_license()

    async def request_otp(ac):
        return await ac.post("/stripe/request-otp", json={"licenseKey": license.license_key})

    with patch("app.services.otp_flow.send_otp_email", side_effect=_slow()):
        result = asyncio.run(_health_while(request_otp))

    _assert_health_not_blocked(result)
    assert result[3].json() == {"ok": True}


def test_slow_portal_session_does_not_block_other_requests(client, make_license):
    license = make_license()
    codes = []
    with patch("app.services.otp_flow.send_otp_email", side_effect=lambda s, to, code: codes.append(code)):
        client.post("/stripe/request-otp", json={"licenseKey": license.license_key})

    async def redeem(ac):
        return await ac.post(
            "/stripe/portal-session",
            json={"licenseKey": license.license_key, "code": codes[0]},
        )

    portal = SimpleNamespace(url="https://billing.stripe.com/p/session_slow")
    with patch("app.services.otp_flow.stripe.billing_portal.Session.create", side_effect=_slow(portal)):
        result = asyncio.run(_health_while(redeem))

    _assert_health_not_blocked(result)
    assert result[3].json() == {"ok": True, "url": "https://billing.stripe.com/p/session_slow"}


def test_slow_webhook_processing_does_not_block_other_requests(client, settings):
    body = json.dumps({
        "id": "evt_slow",
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_slow", "status": "active", "customer": "cus_slow"}},
    })
    timestamp = int(time.time())
    signature = hmac.new(
        settings.stripe_webhook_secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256
    ).hexdigest()
    headers = {"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"}

    async def deliver(ac):
        return await ac.post("/stripe/webhook", content=body, headers=headers)

    customer = SimpleNamespace(id="cus_slow", email="buyer@example.com")
    with patch("app.services.stripe_events.stripe.Customer.retrieve", side_effect=_slow(customer)), \
         patch("app.services.license_sync.send_license_key_email"):
        result = asyncio.run(_health_while(deliver))

    _assert_health_not_blocked(result)
    assert result[3].json() == {"received": True}
