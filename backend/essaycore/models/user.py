"""Identity models: users, linked provider accounts, sessions and verification tokens."""

import secrets
from datetime import datetime
from typing import Optional

import bcrypt
from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Enum as SQLEnum, Integer, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils import new_id, utcnow
from .enums import UserRole, enum_values


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


class User(Base):
    """Application user; the root every other row hangs off."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    email_verified = Column(DateTime, nullable=True)
    hashed_password = Column(String(255), nullable=True)
    image = Column(String(500), nullable=True)
    role = Column(SQLEnum(UserRole, values_callable=enum_values), nullable=False, default=UserRole.student)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    accounts = relationship("Account", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    essays = relationship("Essay", back_populates="author", passive_deletes=True)
    taught_classes = relationship("Classroom", back_populates="teacher", passive_deletes=True)
    enrollments = relationship("Student", back_populates="user", passive_deletes=True)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"

    @property
    def is_teacher(self) -> bool:
        return self.role == UserRole.teacher

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.student

    def set_password(self, password: str) -> None:
        """Hash and set the user's password."""
        self.hashed_password = hash_password(password)

    def verify_password(self, password: str) -> bool:
        """Verify the provided password against the stored hash."""
        if not self.hashed_password:
            return False
        return bcrypt.checkpw(password.encode('utf-8'), self.hashed_password.encode('utf-8'))


class Account(Base):
    """External provider credentials linked to a user."""
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_account_provider"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False, default="oauth")
    provider = Column(String(100), nullable=False)
    provider_account_id = Column(String(255), nullable=False)
    refresh_token = Column(Text, nullable=True)
    access_token = Column(Text, nullable=True)
    expires_at = Column(Integer, nullable=True)
    token_type = Column(String(50), nullable=True)
    scope = Column(String(500), nullable=True)
    id_token = Column(Text, nullable=True)
    session_state = Column(String(255), nullable=True)

    user = relationship("User", back_populates="accounts")

    def __repr__(self):
        return f"<Account(provider='{self.provider}', provider_account_id='{self.provider_account_id}')>"


class UserSession(Base):
    """A logged-in session, looked up by its bearer token."""
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    session_token = Column(String(255), unique=True, index=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires = Column(DateTime, nullable=False)

    user = relationship("User", back_populates="sessions")

    @classmethod
    def generate_token(cls, nbytes: int = 32) -> str:
        """Generate a secure random session token."""
        return secrets.token_urlsafe(nbytes)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires


class VerificationToken(Base):
    """Single-use token for email verification and passwordless flows."""
    __tablename__ = "verification_tokens"

    identifier = Column(String(255), primary_key=True)
    token = Column(String(255), primary_key=True, unique=True)
    expires = Column(DateTime, nullable=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires
