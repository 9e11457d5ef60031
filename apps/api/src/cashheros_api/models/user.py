from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Uuid, func

from cashheros_api.db.base import Base


class UserRoleEnum(str, Enum):
    USER = "user"
    ADMIN = "admin"


class User(Base):
    """Account record carrying credentials, token version and cashback balances."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("token_version >= 0", name="ck_users_token_version_non_negative"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(320), nullable=False, unique=True, index=True)
    password_hash = Column(String(128), nullable=False)
    display_name = Column(String(120), nullable=True)
    role = Column(String(length=16), nullable=False, default=UserRoleEnum.USER.value, server_default=UserRoleEnum.USER.value)
    is_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    verification_token_hash = Column(String(64), nullable=True, unique=True)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    token_version = Column(Integer, nullable=False, default=0, server_default="0")
    failed_login_attempts = Column(Integer, nullable=False, default=0, server_default="0")
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    available_balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    pending_balance = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_earned = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    total_redeemed = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRoleEnum.ADMIN.value
