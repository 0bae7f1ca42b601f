from app.models.license import License, LicenseDomain, LicenseStatus
from app.models.email_otp import EmailOtp

__all__ = [
    "License",
    "LicenseDomain",
    "LicenseStatus",
    "EmailOtp",
]
