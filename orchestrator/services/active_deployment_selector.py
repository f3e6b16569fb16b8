import logging

from orchestrator.models.claim import ClaimKind
from orchestrator.models.deployment import Deployment
from orchestrator.repositories.app_repository import AppRepository
from orchestrator.repositories.claim_repository import ClaimRepository
from orchestrator.repositories.deployment_repository import DeploymentRepository

logger = logging.getLogger(__name__)


class ActiveDeploymentSelector:
    """Seul chemin d'écriture de App.active_deployment_id"""

    def __init__(self, app_repository: AppRepository, deployment_repository: DeploymentRepository,
                 claim_repository: ClaimRepository):
        self.apps = app_repository
        self.deployments = deployment_repository
        self.claims = claim_repository

    def promote(self, deployment: Deployment) -> bool:
        """Rend le déploiement actif, sauf si un déploiement plus récent a déjà abouti"""
        promoted = self.apps.set_active_deployment_if_newest(deployment.app_id, deployment.id)
        if not promoted:
            logger.info(
                f"Déploiement {deployment.id} terminé mais non promu: "
                f"un déploiement plus récent de l'app {deployment.app_id} est déjà actif"
            )
            return False

        logger.info(f"Déploiement {deployment.id} actif pour l'app {deployment.app_id}")

        # Sous-domaines encore utiles : celui de l'actif et ceux des déploiements en cours
        keep = {_subdomain(deployment)}
        keep.update(_subdomain(other) for other in self.deployments.in_flight(deployment.app_id))
        released = self.claims.release_others(deployment.app_id, ClaimKind.SUBDOMAIN, keep)
        if released:
            logger.info(f"{released} sous-domaine(s) libéré(s) pour l'app {deployment.app_id}")
        return True


def _subdomain(deployment: Deployment):
    config = deployment.config or {}
    if config.get("create_ingress"):
        return config.get("subdomain")
    return None
