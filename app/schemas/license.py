from pydantic import BaseModel
from typing import List, Optional


class VerifyLicenseRequest(BaseModel):
    key: Optional[str] = None
    hostname: Optional[str] = None


class LicenseStatusRequest(BaseModel):
    key: Optional[str] = None


class LicenseStatusResponse(BaseModel):
    status: str
    boundDomains: List[str]
    maxDomains: int


class LicenseBySubscriptionResponse(BaseModel):
    licenseKey: str
    status: str
    boundDomains: List[str]
