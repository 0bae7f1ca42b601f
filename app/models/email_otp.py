"""
Model for one-time codes that gate the billing portal.
"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime
from app.db.base import Base


class EmailOtp(Base):
    """
    One row per code sent. Rows are never deleted; a row stops being live
    once used_at is set (redeemed or superseded) or expires_at has passed.
    Only the HMAC of the code is stored.
    """

    __tablename__ = "email_otps"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, index=True)  # Lowercased
    code_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<EmailOtp(id={self.id}, expires_at={self.expires_at}, used_at={self.used_at})>"
