"""Identity store: users, provider accounts, sessions and verification tokens."""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

import requests
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config
from ..database import commit_or_raise, get_db, rollback_and_wrap
from ..errors import CascadeFailure, ConflictError, NotFoundError, ValidationError
from ..models import (
    Account, Classroom, Essay, Feedback, Student, User, UserRole, UserSession, VerificationToken,
)
from ..models.user import hash_password
from ..utils import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")

ACCOUNT_TOKEN_FIELDS = (
    "type", "refresh_token", "access_token", "expires_at",
    "token_type", "scope", "id_token", "session_state",
)


class IdentityService:
    def __init__(self, db: Session):
        self.db = db

    # Users

    def get_user(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.scalars(select(User).where(User.email == email)).first()

    def create_user(
        self,
        email: str,
        name: Optional[str] = None,
        hashed_password: Optional[str] = None,
        role: UserRole = UserRole.student,
        image: Optional[str] = None,
    ) -> User:
        """Create a user; the email must not be registered yet."""
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required", entity="User", field="email")
        if self.get_user_by_email(email):
            raise ConflictError("Email already in use", entity="User", key=email, field="email")

        user = User(email=email, name=name, hashed_password=hashed_password, role=role, image=image)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            # Lost a race against a concurrent signup with the same email
            self.db.rollback()
            logger.info(f"Duplicate email on insert: {email}")
            raise ConflictError("Email already in use", entity="User", key=email, field="email") from e
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "User", email) from e
        self.db.refresh(user)
        logger.info(f"Created user {user.id} with role {user.role.value}")
        return user

    def register_user(self, email: str, password: str, name: Optional[str] = None,
                      role: UserRole = UserRole.student) -> User:
        """Create a password user; the password is hashed with bcrypt."""
        return self.create_user(email, name=name, hashed_password=hash_password(password), role=role)

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """Authenticate a user with email and password."""
        user = self.get_user_by_email((email or "").strip().lower())
        if not user or not user.verify_password(password):
            return None
        return user

    def delete_user(self, user_id: str) -> None:
        """Delete a user and everything that depends on it, all or nothing.

        Removes the user's accounts, sessions and enrollments, every class the
        user teaches (with that class's essays, feedback and enrollments) and
        every essay the user wrote (with its feedback).
        """
        self.get_user(user_id)
        try:
            self._delete_credentials(user_id)
            self._delete_owned_classes(user_id)
            self._delete_authored_essays(user_id)
            self.db.execute(delete(Student).where(Student.user_id == user_id))
            self.db.execute(delete(User).where(User.id == user_id))
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Cascade delete of user {user_id} failed: {e}")
            self.db.rollback()
            raise CascadeFailure(f"Could not delete user {user_id}", entity="User", key=user_id) from e
        logger.info(f"Deleted user {user_id} and dependents")

    def _delete_credentials(self, user_id: str) -> None:
        self.db.execute(delete(Account).where(Account.user_id == user_id))
        self.db.execute(delete(UserSession).where(UserSession.user_id == user_id))

    def _delete_owned_classes(self, user_id: str) -> None:
        class_ids = select(Classroom.id).where(Classroom.teacher_id == user_id)
        essay_ids = select(Essay.id).where(Essay.class_id.in_(class_ids))
        self.db.execute(delete(Feedback).where(Feedback.essay_id.in_(essay_ids)))
        self.db.execute(delete(Essay).where(Essay.class_id.in_(class_ids)))
        self.db.execute(delete(Student).where(Student.class_id.in_(class_ids)))
        self.db.execute(delete(Classroom).where(Classroom.teacher_id == user_id))

    def _delete_authored_essays(self, user_id: str) -> None:
        essay_ids = select(Essay.id).where(Essay.author_id == user_id)
        self.db.execute(delete(Feedback).where(Feedback.essay_id.in_(essay_ids)))
        self.db.execute(delete(Essay).where(Essay.author_id == user_id))

    # Accounts

    def link_account(self, user_id: str, provider: str, provider_account_id: str, **token_fields) -> Account:
        """Link an external provider identity to a user.

        A (provider, provider_account_id) pair already linked to any user,
        including this one, is a conflict.
        """
        self.get_user(user_id)
        unknown = set(token_fields) - set(ACCOUNT_TOKEN_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown account fields: {sorted(unknown)}", entity="Account")

        existing = self.find_account(provider, provider_account_id)
        if existing is not None:
            raise ConflictError(
                "Provider account already linked",
                entity="Account", key=f"{provider}:{provider_account_id}", field="provider_account_id",
            )

        account = Account(
            user_id=user_id, provider=provider, provider_account_id=provider_account_id, **token_fields
        )
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                "Provider account already linked",
                entity="Account", key=f"{provider}:{provider_account_id}", field="provider_account_id",
            ) from e
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "Account", f"{provider}:{provider_account_id}") from e
        self.db.refresh(account)
        logger.info(f"Linked {provider} account to user {user_id}")
        return account

    def find_account(self, provider: str, provider_account_id: str) -> Optional[Account]:
        return self.db.scalars(
            select(Account).where(
                Account.provider == provider,
                Account.provider_account_id == provider_account_id,
            )
        ).first()

    def sign_in_with_google(self, id_token: str) -> UserSession:
        """Verify a Google ID token, find or create its user and open a session."""
        try:
            response = requests.get(config.GOOGLE_TOKENINFO_URL, params={"id_token": id_token}, timeout=10)
        except requests.RequestException as e:
            logger.error(f"Google token verification failed: {e}")
            raise ValidationError("Could not verify Google token", entity="Account") from e
        if response.status_code != 200:
            raise ValidationError("Invalid token", entity="Account", field="token")
        try:
            profile = response.json()
        except ValueError as e:
            raise ValidationError("Malformed Google token response", entity="Account", field="token") from e
        if not isinstance(profile, dict):
            raise ValidationError("Malformed Google token response", entity="Account", field="token")

        subject = profile.get("sub")
        if not subject:
            raise ValidationError("Google token has no subject", entity="Account", field="token")
        email = profile.get("email")
        verified = str(profile.get("email_verified", "")).lower() == "true"
        if not email or not verified:
            raise ValidationError("Google account email not verified", entity="Account", field="email")

        account = self.find_account("google", subject)
        if account is not None:
            user = account.user
        else:
            user = self.get_user_by_email(email.lower())
            if user is None:
                user = self.create_user(email, name=profile.get("name"), image=profile.get("picture"))
            self.link_account(user.id, "google", subject, type="oauth", id_token=id_token)
        if user.email_verified is None:
            user.email_verified = utcnow()
            commit_or_raise(self.db, "User", user.id)
        return self.start_session(user.id)

    # Sessions

    def create_session(self, user_id: str, session_token: str, expires: datetime) -> UserSession:
        self.get_user(user_id)
        session = UserSession(user_id=user_id, session_token=session_token, expires=as_naive_utc(expires))
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("Session token already exists", entity="Session", field="session_token") from e
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "Session", user_id) from e
        self.db.refresh(session)
        return session

    def start_session(self, user_id: str) -> UserSession:
        """Open a session with a fresh random token."""
        expires = utcnow() + timedelta(days=config.SESSION_MAX_AGE_DAYS)
        return self.create_session(user_id, UserSession.generate_token(), expires)

    def get_session(self, session_token: str) -> Optional[UserSession]:
        """Return the live session for a token; expired sessions read as None."""
        session = self.db.scalars(
            select(UserSession).where(UserSession.session_token == session_token)
        ).first()
        if session is None or session.is_expired():
            return None
        return session

    def delete_session(self, session_token: str) -> None:
        try:
            self.db.execute(delete(UserSession).where(UserSession.session_token == session_token))
            self.db.commit()
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "Session") from e

    def purge_expired_sessions(self) -> int:
        try:
            result = self.db.execute(delete(UserSession).where(UserSession.expires <= utcnow()))
            self.db.commit()
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "Session") from e
        logger.info(f"Purged {result.rowcount} expired sessions")
        return result.rowcount

    # Verification tokens

    def issue_verification_token(self, identifier: str, token: str, expires: datetime) -> VerificationToken:
        identifier = _normalize_identifier(identifier)
        row = VerificationToken(identifier=identifier, token=token, expires=as_naive_utc(expires))
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("Verification token already issued", entity="VerificationToken",
                                field="token") from e
        except SQLAlchemyError as e:
            raise rollback_and_wrap(self.db, e, "VerificationToken", identifier) from e
        self.db.refresh(row)
        return row

    def start_email_verification(self, email: str) -> VerificationToken:
        expires = utcnow() + timedelta(hours=config.VERIFICATION_TOKEN_TTL_HOURS)
        return self.issue_verification_token(email, secrets.token_urlsafe(32), expires)

    def consume_verification_token(self, identifier: str, token: str) -> str:
        """Use a token once. Expired tokens are removed and reported as missing."""
        identifier = _normalize_identifier(identifier)
        row = self.db.scalars(
            select(VerificationToken).where(
                VerificationToken.identifier == identifier,
                VerificationToken.token == token,
            )
        ).first()
        if row is None:
            raise NotFoundError("VerificationToken", token)

        expired = row.is_expired()
        self.db.delete(row)
        if not expired:
            user = self.get_user_by_email(identifier)
            if user is not None and user.email_verified is None:
                user.email_verified = utcnow()
        commit_or_raise(self.db, "VerificationToken", identifier)
        if expired:
            raise NotFoundError("VerificationToken", token, message="Verification token expired")
        return identifier


def _normalize_identifier(identifier: str) -> str:
    # Identifiers are email addresses, compared case-insensitively
    return (identifier or "").strip().lower()


def get_identity_service(db: Session = Depends(get_db)) -> IdentityService:
    """Dependency to get an instance of IdentityService."""
    return IdentityService(db)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    service: IdentityService = Depends(get_identity_service),
) -> User:
    """Dependency resolving the bearer session token to the acting user."""
    session = service.get_session(token)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session.user
