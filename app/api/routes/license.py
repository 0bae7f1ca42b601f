"""
License Routes
Domain verification called by the client script on every page load,
plus a status lookup by key.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.license import License
from app.schemas.license import LicenseStatusRequest, LicenseStatusResponse, VerifyLicenseRequest
from app.services.domain_binding import INVALID_KEY, verify_domain

router = APIRouter()


@router.post("/verify")
def verify_license(
    request: VerifyLicenseRequest,
    db: Session = Depends(get_db),
):
    """
    Verify a license key for the calling hostname and bind the hostname
    if there is room. Always 200; denials carry active=false and a reason.
    """
    return verify_domain(db, request.key, request.hostname)


@router.post("/status", response_model=LicenseStatusResponse)
def license_status(
    request: LicenseStatusRequest,
    db: Session = Depends(get_db),
):
    key = (request.key or "").strip()
    license = db.query(License).filter(License.license_key == key).first() if key else None
    if not license:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"active": False, "reason": INVALID_KEY},
        )

    return {
        "status": license.status.value,
        "boundDomains": [d.hostname for d in license.domains],
        "maxDomains": license.max_domains,
    }
