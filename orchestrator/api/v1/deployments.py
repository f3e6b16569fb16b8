from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status

from orchestrator.api.auth import get_current_active_user
from orchestrator.api.schemas.deployment import (
    BuildCallback,
    BuildOutcome,
    DeploymentCreate,
    DeploymentPage,
    DeploymentResponse,
)
from orchestrator.dependencies import get_deployment_service
from orchestrator.models.user import User
from orchestrator.services.deployment_service import DeploymentService

router = APIRouter(tags=["deployments"])


@router.post("/apps/{app_id}/deployments", response_model=DeploymentResponse,
             status_code=status.HTTP_201_CREATED)
def create_deployment(
        app_id: int,
        payload: DeploymentCreate,
        service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    """Déploiement manuel : config complète, ou redeploy depuis un déploiement modèle"""
    app = service.get_app(app_id, current_user)
    return service.to_response(service.create(app, payload))


@router.get("/apps/{app_id}/deployments", response_model=DeploymentPage)
def list_deployments(
        app_id: int,
        page: int = Query(0, ge=0),
        length: int = Query(20, ge=1, le=100),
        service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    """Historique des déploiements, du plus récent au plus ancien"""
    app = service.get_app(app_id, current_user)
    return service.list_deployments(app, page=page, length=length)


@router.get("/apps/{app_id}/deployments/{deployment_id}", response_model=DeploymentResponse)
def get_deployment(
        app_id: int,
        deployment_id: int,
        service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    app = service.get_app(app_id, current_user)
    return service.to_response(service.get_deployment(app, deployment_id))


@router.post("/apps/{app_id}/deployments/{deployment_id}/cancel", response_model=DeploymentResponse)
def cancel_deployment(
        app_id: int,
        deployment_id: int,
        service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    app = service.get_app(app_id, current_user)
    return service.to_response(service.cancel(app, deployment_id))


@router.post("/apps/{app_id}/deployments/{deployment_id}/stop", response_model=DeploymentResponse)
def stop_deployment(
        app_id: int,
        deployment_id: int,
        service: DeploymentService = Depends(get_deployment_service),
        current_user: User = Depends(get_current_active_user)
):
    app = service.get_app(app_id, current_user)
    return service.to_response(service.stop(app, deployment_id))


@router.post("/deployments/build-callback", response_model=DeploymentResponse)
def build_callback(
        payload: BuildCallback,
        x_build_secret: Optional[str] = Header(None),
        service: DeploymentService = Depends(get_deployment_service)
):
    """Résultat d'un build, authentifié par le secret propre au déploiement"""
    deployment = service.build_callback(
        payload.deployment_id,
        x_build_secret,
        success=payload.outcome == BuildOutcome.SUCCESS,
        image_ref=payload.image_ref,
        reason=payload.reason,
    )
    return service.to_response(deployment)
