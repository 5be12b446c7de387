"""
One-time verification code storage.

One row per (email, purpose). Issuing a new code replaces the row; a
successful verification flips ``used`` so the code can never be replayed while
the row still records when the last code was issued (resend throttling).
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)

    # 'registration', 'password_reset' or 'reset_token'
    purpose: Mapped[str] = mapped_column(String(20), primary_key=True)

    # 6 digits for emailed codes, URL-safe token for reset tokens
    code: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Index for efficient cleanup of expired codes
    __table_args__ = (
        Index("ix_verification_codes_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<VerificationCode(email={self.email}, purpose={self.purpose}, expires={self.expires_at})>"
