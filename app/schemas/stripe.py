from pydantic import BaseModel
from typing import Optional


class RequestOtpRequest(BaseModel):
    licenseKey: Optional[str] = None


class PortalSessionRequest(BaseModel):
    licenseKey: Optional[str] = None
    code: Optional[str] = None
