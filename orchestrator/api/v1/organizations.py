from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from orchestrator.api.auth import get_current_active_user
from orchestrator.api.schemas.organization import (
    AppGroupCreate,
    AppGroupResponse,
    OrganizationCreate,
    OrganizationResponse,
)
from orchestrator.core.database import get_db
from orchestrator.core.exceptions import PermissionDeniedError, ValidationError
from orchestrator.models.user import User, UserRole
from orchestrator.repositories.organization_repository import OrganizationRepository

router = APIRouter(prefix="/organizations", tags=["organizations"])


def get_organization_repository(db: Session = Depends(get_db)) -> OrganizationRepository:
    return OrganizationRepository(db)


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
def create_organization(
        payload: OrganizationCreate,
        organizations: OrganizationRepository = Depends(get_organization_repository),
        current_user: User = Depends(get_current_active_user)
):
    """Créer une organisation dont l'utilisateur courant est membre"""
    if organizations.get_by_field("name", payload.name) is not None:
        raise ValidationError(f"L'organisation '{payload.name}' existe déjà")
    return OrganizationResponse.model_validate(organizations.create_with_owner(payload.name, current_user.id))


@router.get("/", response_model=List[OrganizationResponse])
def list_organizations(
        organizations: OrganizationRepository = Depends(get_organization_repository),
        current_user: User = Depends(get_current_active_user)
):
    """Organisations dont l'utilisateur courant est membre"""
    return [OrganizationResponse.model_validate(org) for org in organizations.list_for_user(current_user.id)]


def _ensure_member(organizations: OrganizationRepository, organization_id: int, user: User) -> None:
    if user.role != UserRole.ADMIN and not organizations.is_member(organization_id, user.id):
        raise PermissionDeniedError("Vous n'êtes pas membre de cette organisation")


@router.post("/{organization_id}/groups", response_model=AppGroupResponse, status_code=status.HTTP_201_CREATED)
def create_group(
        organization_id: int,
        payload: AppGroupCreate,
        organizations: OrganizationRepository = Depends(get_organization_repository),
        current_user: User = Depends(get_current_active_user)
):
    """Créer un groupe d'apps dans l'organisation"""
    _ensure_member(organizations, organization_id, current_user)
    return AppGroupResponse.model_validate(organizations.create_group(organization_id, payload.name))


@router.get("/{organization_id}/groups", response_model=List[AppGroupResponse])
def list_groups(
        organization_id: int,
        organizations: OrganizationRepository = Depends(get_organization_repository),
        current_user: User = Depends(get_current_active_user)
):
    _ensure_member(organizations, organization_id, current_user)
    return [AppGroupResponse.model_validate(group) for group in organizations.list_groups(organization_id)]
