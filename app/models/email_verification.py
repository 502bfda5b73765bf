from sqlalchemy import CHAR, Column, DateTime, Integer, String, func

from app.core.db import Base
import uuid


def uuid_str() -> str:
    return str(uuid.uuid4())


class EmailVerification(Base):
    __tablename__ = "email_verifications"

    id = Column(CHAR(36), primary_key=True, default=uuid_str)
    email = Column(String(255), unique=True, nullable=False)
    code = Column(String(16), nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
