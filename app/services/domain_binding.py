"""
License domain binding.

A license may be used on at most `max_domains` hostnames. The first
successful verification from a hostname binds it; later verifications from
the same hostname only refresh last_seen_at.

The capacity check and the insert are not wrapped in a serializable
transaction: two brand new hostnames verifying at the same moment on a
license one below its limit can both be bound. The unique constraint on
(license_id, hostname) still collapses concurrent inserts of the same
hostname into a single row.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.license import ALLOWED_STATUSES, License, LicenseDomain
from app.utils.license_keys import normalize_hostname

logger = logging.getLogger(__name__)

INVALID_KEY = "INVALID_KEY"
INACTIVE_SUBSCRIPTION = "INACTIVE_SUBSCRIPTION"
LIMIT_REACHED = "LIMIT_REACHED"


def _denied(reason: str) -> Dict[str, Any]:
    return {"active": False, "reason": reason}


def _granted(hostnames: List[str], max_domains: int) -> Dict[str, Any]:
    return {"active": True, "boundDomains": hostnames, "maxDomains": max_domains}


def _bound_hostnames(db: Session, license_id: int) -> List[str]:
    rows = (
        db.query(LicenseDomain.hostname)
        .filter(LicenseDomain.license_id == license_id)
        .order_by(LicenseDomain.created_at.asc(), LicenseDomain.id.asc())
        .all()
    )
    return [row[0] for row in rows]


def _touch(db: Session, domain_id: int) -> None:
    db.query(LicenseDomain).filter(LicenseDomain.id == domain_id).update(
        {LicenseDomain.last_seen_at: datetime.utcnow()},
        synchronize_session=False,
    )
    db.commit()


def _bind(db: Session, license: License, hostname: str) -> Dict[str, Any]:
    domains = (
        db.query(LicenseDomain)
        .filter(LicenseDomain.license_id == license.id)
        .order_by(LicenseDomain.created_at.asc(), LicenseDomain.id.asc())
        .all()
    )

    existing = next((d for d in domains if d.hostname == hostname), None)
    if existing:
        _touch(db, existing.id)
        return _granted([d.hostname for d in domains], license.max_domains)

    if len(domains) >= license.max_domains:
        return _denied(LIMIT_REACHED)

    now = datetime.utcnow()
    db.add(LicenseDomain(
        license_id=license.id,
        hostname=hostname,
        created_at=now,
        last_seen_at=now,
    ))
    try:
        db.commit()
    except IntegrityError:
        # Same hostname bound by a concurrent request; treat as a re-check
        db.rollback()
        winner = (
            db.query(LicenseDomain)
            .filter(LicenseDomain.license_id == license.id, LicenseDomain.hostname == hostname)
            .first()
        )
        if winner is None:
            raise
        _touch(db, winner.id)
        return _granted(_bound_hostnames(db, license.id), license.max_domains)

    logger.info("License %s bound to new domain %s", license.id, hostname)
    return _granted([d.hostname for d in domains] + [hostname], license.max_domains)


def verify_domain(db: Session, key: str, hostname: str) -> Dict[str, Any]:
    """
    Check that `key` is an active license and that `hostname` may use it.
    Returns {active, reason} on denial, {active, boundDomains, maxDomains}
    on success. Any unexpected error is reported as INACTIVE_SUBSCRIPTION,
    never as active.
    """
    key = (key or "").strip()
    hostname_input = (hostname or "").strip()
    if not key or not hostname_input:
        return _denied(INVALID_KEY)

    try:
        license = db.query(License).filter(License.license_key == key).first()
        if not license:
            return _denied(INVALID_KEY)

        if license.status not in ALLOWED_STATUSES:
            return _denied(INACTIVE_SUBSCRIPTION)

        normalized = normalize_hostname(hostname_input)
        if not normalized:
            return _denied(INVALID_KEY)

        return _bind(db, license, normalized)
    except Exception:
        logger.exception("Domain verification failed; reporting inactive")
        db.rollback()
        return _denied(INACTIVE_SUBSCRIPTION)
