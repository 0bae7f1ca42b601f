from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from app.models import LicenseDomain, LicenseStatus
from app.services.domain_binding import verify_domain


def _verify(client, key, hostname):
    response = client.post("/license/verify", json={"key": key, "hostname": hostname})
    assert response.status_code == 200
    return response.json()


def test_walkthrough_up_to_limit(client, make_license):
    license = make_license(max_domains=2)

    assert _verify(client, license.license_key, "www.Foo.com") == {
        "active": True, "boundDomains": ["foo.com"], "maxDomains": 2,
    }
    assert _verify(client, license.license_key, "foo.com") == {
        "active": True, "boundDomains": ["foo.com"], "maxDomains": 2,
    }
    assert _verify(client, license.license_key, "bar.com") == {
        "active": True, "boundDomains": ["foo.com", "bar.com"], "maxDomains": 2,
    }
    assert _verify(client, license.license_key, "baz.com") == {
        "active": False, "reason": "LIMIT_REACHED",
    }


@pytest.mark.parametrize("body", [
    {},
    {"key": "", "hostname": "foo.com"},
    {"key": "SPRO_x", "hostname": "   "},
    {"hostname": "foo.com"},
])
def test_missing_fields_are_invalid_key(client, body):
    response = client.post("/license/verify", json=body)
    assert response.json() == {"active": False, "reason": "INVALID_KEY"}


def test_unknown_key(client):
    assert _verify(client, "SPRO_nope", "foo.com") == {"active": False, "reason": "INVALID_KEY"}


def test_hostname_that_normalizes_to_empty(client, make_license):
    license = make_license()
    assert _verify(client, license.license_key, "www.") == {"active": False, "reason": "INVALID_KEY"}


@pytest.mark.parametrize("status", [LicenseStatus.PAST_DUE, LicenseStatus.CANCELED, LicenseStatus.INCOMPLETE])
def test_inactive_statuses_are_denied(client, make_license, db_session, status):
    license = make_license(status=status)
    assert _verify(client, license.license_key, "foo.com") == {
        "active": False, "reason": "INACTIVE_SUBSCRIPTION",
    }
    assert db_session.query(LicenseDomain).count() == 0


def test_trialing_is_allowed(client, make_license):
    license = make_license(status=LicenseStatus.TRIALING)
    assert _verify(client, license.license_key, "foo.com")["active"] is True


def test_recheck_refreshes_last_seen_without_new_row(client, make_license, bind_domain, db_session):
    license = make_license()
    domain = bind_domain(license, "foo.com")
    stale = datetime.utcnow() - timedelta(days=3)
    domain.last_seen_at = stale
    db_session.commit()

    for _ in range(3):
        result = _verify(client, license.license_key, "WWW.FOO.COM")
        assert result["boundDomains"] == ["foo.com"]

    db_session.expire_all()
    rows = db_session.query(LicenseDomain).filter_by(license_id=license.id).all()
    assert len(rows) == 1
    assert rows[0].last_seen_at > stale


def test_limit_reached_leaves_bindings_unchanged(client, make_license, bind_domain, db_session):
    license = make_license(max_domains=1)
    bind_domain(license, "foo.com")

    assert _verify(client, license.license_key, "bar.com") == {"active": False, "reason": "LIMIT_REACHED"}
    hostnames = [d.hostname for d in db_session.query(LicenseDomain).filter_by(license_id=license.id)]
    assert hostnames == ["foo.com"]
    # Already bound hostname still verifies at capacity
    assert _verify(client, license.license_key, "foo.com")["active"] is True


def test_bindings_are_per_license(client, make_license, bind_domain):
    first = make_license(max_domains=1)
    second = make_license(max_domains=1)
    bind_domain(first, "foo.com")

    assert _verify(client, second.license_key, "foo.com") == {
        "active": True, "boundDomains": ["foo.com"], "maxDomains": 1,
    }


def test_errors_fail_closed(db_session, make_license):
    license = make_license()
    with patch("app.services.domain_binding._bind", side_effect=RuntimeError("db down")):
        result = verify_domain(db_session, license.license_key, "foo.com")
    assert result == {"active": False, "reason": "INACTIVE_SUBSCRIPTION"}


def test_concurrent_insert_of_same_hostname_refreshes_winner(db_session, make_license):
    """Another request binds the same hostname between our capacity check and insert."""
    license = make_license(max_domains=2)
    stale = datetime.utcnow() - timedelta(hours=1)
    real_commit = db_session.commit
    calls = {"n": 0}

    def racing_commit():
        calls["n"] += 1
        if calls["n"] == 1:
            db_session.rollback()
            db_session.add(LicenseDomain(
                license_id=license.id, hostname="foo.com", created_at=stale, last_seen_at=stale,
            ))
            real_commit()
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))
        return real_commit()

    with patch.object(db_session, "commit", side_effect=racing_commit):
        result = verify_domain(db_session, license.license_key, "foo.com")

    assert result == {"active": True, "boundDomains": ["foo.com"], "maxDomains": 2}
    rows = db_session.query(LicenseDomain).filter_by(license_id=license.id).all()
    assert len(rows) == 1
    db_session.refresh(rows[0])
    assert rows[0].last_seen_at > stale


def test_license_status_endpoint(client, make_license, bind_domain):
    license = make_license(max_domains=3)
    bind_domain(license, "foo.com")

    response = client.post("/license/status", json={"key": license.license_key})
    assert response.status_code == 200
    assert response.json() == {"status": "ACTIVE", "boundDomains": ["foo.com"], "maxDomains": 3}


def test_license_status_unknown_key(client):
    response = client.post("/license/status", json={"key": "SPRO_missing"})
    assert response.status_code == 404
    assert response.json()["reason"] == "INVALID_KEY"


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
