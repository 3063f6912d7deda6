"""Identity endpoints: registration, login, sessions and email verification."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm

from ..models import User
from .schemas import (
    GoogleSignIn, SessionToken, UserCreate, UserResponse, VerificationConfirm, VerificationRequest,
)
from .service import IdentityService, get_current_user, get_identity_service, oauth2_scheme

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _session_response(session) -> SessionToken:
    return SessionToken(access_token=session.session_token, expires=session.expires)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(
    user_data: UserCreate,
    service: IdentityService = Depends(get_identity_service)
):
    """Register a new user."""
    return service.register_user(
        user_data.email, user_data.password, name=user_data.name, role=user_data.role
    )


@router.post("/login", response_model=SessionToken)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    service: IdentityService = Depends(get_identity_service)
):
    """OAuth2 compatible password login, returns a session token."""
    user = service.authenticate_user(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _session_response(service.start_session(user.id))


@router.post("/google", response_model=SessionToken)
def google_sign_in(
    payload: GoogleSignIn,
    service: IdentityService = Depends(get_identity_service)
):
    """Sign in with a Google ID token, creating the user on first use."""
    return _session_response(service.sign_in_with_google(payload.token))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    token: str = Depends(oauth2_scheme),
    service: IdentityService = Depends(get_identity_service)
):
    """End the current session."""
    service.delete_session(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=UserResponse)
def read_users_me(current_user: User = Depends(get_current_user)):
    """Get the current user's profile."""
    return current_user


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_me(
    current_user: User = Depends(get_current_user),
    service: IdentityService = Depends(get_identity_service)
):
    """Delete the current user together with everything they own."""
    service.delete_user(current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/verify-email/request", status_code=status.HTTP_202_ACCEPTED)
def request_email_verification(
    payload: VerificationRequest,
    service: IdentityService = Depends(get_identity_service)
):
    """Issue a verification token for an email address."""
    # Delivery is handled by the mail collaborator; the token is never echoed back
    service.start_email_verification(payload.email)
    return {"message": "If an account with this email exists, a verification link has been sent"}


@router.post("/verify-email/confirm")
def confirm_email_verification(
    payload: VerificationConfirm,
    service: IdentityService = Depends(get_identity_service)
):
    """Consume a verification token."""
    identifier = service.consume_verification_token(payload.identifier, payload.token)
    return {"message": "Email verified", "identifier": identifier}
