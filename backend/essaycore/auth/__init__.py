"""Identity package: users, accounts, sessions and verification tokens."""
from .service import IdentityService, get_current_user, get_identity_service
from .router import router as auth_router

__all__ = [
    'IdentityService',
    'get_current_user',
    'get_identity_service',
    'auth_router'
]
