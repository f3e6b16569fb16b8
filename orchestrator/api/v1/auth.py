from fastapi import APIRouter, Depends, status

from orchestrator.api.auth import get_current_active_user
from orchestrator.api.schemas.auth import Token, UserCreate, UserLogin, UserResponse
from orchestrator.dependencies import get_auth_service
from orchestrator.models.user import User
from orchestrator.services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(
        payload: UserCreate,
        auth_service: AuthService = Depends(get_auth_service)
):
    """Créer un compte"""
    return UserResponse.model_validate(auth_service.register(payload))


@router.post("/login", response_model=Token)
def login(
        credentials: UserLogin,
        auth_service: AuthService = Depends(get_auth_service)
):
    return auth_service.login(credentials.username, credentials.password)


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_active_user)):
    return UserResponse.model_validate(current_user)
