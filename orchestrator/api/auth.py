from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from orchestrator.core.exceptions import AuthenticationError
from orchestrator.dependencies import get_auth_service
from orchestrator.models.user import User
from orchestrator.services.auth_service import AuthService

# Absence de jeton traitée comme un jeton invalide (401)
bearer = HTTPBearer(auto_error=False)


def get_current_active_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
        auth_service: AuthService = Depends(get_auth_service)
) -> User:
    """Utilisateur porteur du jeton Bearer"""
    if credentials is None:
        raise AuthenticationError("Authentification requise")
    return auth_service.user_from_token(credentials.credentials)
