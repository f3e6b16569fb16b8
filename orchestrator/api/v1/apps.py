from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status

from orchestrator.api.auth import get_current_active_user
from orchestrator.api.schemas.app import AppCreate, AppCreated, AppResponse, Availability, CdToggle, ConfigUpdate
from orchestrator.api.schemas.deployment import DeploymentResponse
from orchestrator.dependencies import get_app_service, get_deployment_service
from orchestrator.models.user import User
from orchestrator.services.app_service import AppService
from orchestrator.services.deployment_service import DeploymentService

router = APIRouter(prefix="/apps", tags=["apps"])


@router.post("/", response_model=AppCreated, status_code=status.HTTP_201_CREATED)
def create_app(
        payload: AppCreate,
        app_service: AppService = Depends(get_app_service),
        current_user: User = Depends(get_current_active_user)
):
    """Créer une app et lancer son premier déploiement"""
    app, deployment = app_service.create_app(current_user, payload)
    return AppCreated(
        app=AppResponse.model_validate(app),
        deployment=app_service.deployment_service.to_response(deployment),
    )


@router.get("/", response_model=List[AppResponse])
def list_apps(
        organization_id: int,
        deployment_service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    deployment_service.ensure_member(current_user, organization_id)
    return [AppResponse.model_validate(app) for app in deployment_service.apps.list_for_organization(organization_id)]


@router.get("/availability", response_model=Availability)
def check_availability(
        subdomain: Optional[str] = None,
        namespace: Optional[str] = None,
        app_service: AppService = Depends(get_app_service),
        current_user: User = Depends(get_current_active_user)
):
    """Disponibilité d'un sous-domaine et/ou d'un namespace"""
    return app_service.availability(subdomain=subdomain, namespace=namespace)


@router.get("/{app_id}", response_model=AppResponse)
def get_app(
        app_id: int,
        deployment_service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    return AppResponse.model_validate(deployment_service.get_app(app_id, current_user))


@router.put("/{app_id}/cd", response_model=AppResponse)
def set_cd(
        app_id: int,
        payload: CdToggle,
        app_service: AppService = Depends(get_app_service),
        current_user: User = Depends(get_current_active_user)
):
    """Activer ou désactiver le déploiement continu"""
    app = app_service.deployment_service.get_app(app_id, current_user)
    return AppResponse.model_validate(app_service.set_cd_enabled(app, payload.enabled))


@router.patch("/{app_id}/config", response_model=DeploymentResponse, status_code=status.HTTP_202_ACCEPTED)
def update_config(
        app_id: int,
        payload: ConfigUpdate,
        deployment_service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    """Redéployer l'artefact actif avec une nouvelle configuration"""
    app = deployment_service.get_app(app_id, current_user)
    return deployment_service.to_response(deployment_service.update_config(app, payload.delta))


@router.delete("/{app_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_app(
        app_id: int,
        app_service: AppService = Depends(get_app_service),
        current_user: User = Depends(get_current_active_user)
):
    app = app_service.deployment_service.get_app(app_id, current_user)
    app_service.delete_app(app)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
