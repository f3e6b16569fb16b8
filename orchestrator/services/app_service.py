import logging
import re
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orchestrator.api.schemas.app import AppCreate, Availability
from orchestrator.api.schemas.config import ConfigDelta
from orchestrator.core.exceptions import ConflictError, OrchestratorError, ValidationError
from orchestrator.core.locks import app_locks
from orchestrator.models.app import App
from orchestrator.models.claim import ClaimKind
from orchestrator.models.deployment import Deployment
from orchestrator.models.user import User
from orchestrator.repositories.app_repository import AppRepository
from orchestrator.repositories.claim_repository import ClaimRepository
from orchestrator.repositories.deployment_repository import DeploymentRepository
from orchestrator.repositories.organization_repository import OrganizationRepository
from orchestrator.services import config_resolver, trigger_ingestion
from orchestrator.services.deployment_service import DeploymentService

logger = logging.getLogger(__name__)


class AppService:
    def __init__(self, db: Session, deployment_service: DeploymentService, k8s_client,
                 namespace_prefix: str = "app-"):
        self.db = db
        self.deployment_service = deployment_service
        self.k8s_client = k8s_client
        self.namespace_prefix = namespace_prefix
        self.apps = AppRepository(db)
        self.deployments = DeploymentRepository(db)
        self.claims = ClaimRepository(db)
        self.organizations = OrganizationRepository(db)

    def create_app(self, user: User, payload: AppCreate) -> Tuple[App, Deployment]:
        """Crée l'app, réserve son namespace et lance son premier déploiement"""
        self.deployment_service.ensure_member(user, payload.organization_id)

        namespace = payload.namespace or self.default_namespace(payload.name)
        config_resolver.validate_namespace(namespace)
        if self.claims.owner_of(ClaimKind.NAMESPACE, namespace) is not None:
            raise ValidationError(f"Le namespace '{namespace}' est déjà utilisé")

        if payload.app_group_id is not None and self.organizations.get_group(
                payload.organization_id, payload.app_group_id) is None:
            raise ValidationError(f"Groupe {payload.app_group_id} introuvable dans cette organisation")

        delta = ConfigDelta.model_validate(payload.config.model_dump(mode="json"))
        # Validation complète avant toute écriture
        config_resolver.resolve(
            None,
            delta,
            subdomain_owner=lambda subdomain: self.claims.owner_of(ClaimKind.SUBDOMAIN, subdomain),
        )

        try:
            app = self.apps.create({
                "organization_id": payload.organization_id,
                "app_group_id": payload.app_group_id,
                "name": payload.name,
                "display_name": payload.display_name or payload.name,
                "namespace": namespace,
                "cd_enabled": payload.cd_enabled,
                "sensitive_env_names": [],
            })
        except IntegrityError as e:
            logger.info(f"Course perdue pour le namespace '{namespace}'")
            raise ConflictError(f"Le namespace '{namespace}' vient d'être réservé par une autre app") from e
        try:
            self.claims.claim(ClaimKind.NAMESPACE, namespace, app.id)
            deployment = self.deployment_service.submit(trigger_ingestion.ingest_manual(app, delta=delta))
        except ValidationError:
            # Course perdue sur le namespace ou le sous-domaine : l'app n'a jamais existé
            self.claims.release_all(app.id)
            self.apps.delete_with_deployments(app)
            raise

        logger.info(f"App {app.id} créée dans le namespace {namespace}")
        return app, deployment

    def set_cd_enabled(self, app: App, enabled: bool) -> App:
        self.apps.save(app, cd_enabled=enabled)
        logger.info(f"Déploiement continu {'activé' if enabled else 'désactivé'} pour l'app {app.id}")
        return app

    def delete_app(self, app: App) -> None:
        """Supprime les ressources du cluster puis l'app et son historique"""
        with app_locks.for_app(app.id):
            for deployment in self.deployments.in_flight(app.id):
                self.deployment_service.state_machine.cancel_build(deployment)
            try:
                self.k8s_client.delete_namespace(app.namespace)
            except Exception as e:
                logger.error(f"Suppression du namespace {app.namespace} impossible: {e}")
                raise OrchestratorError(f"Suppression des ressources de l'app impossible: {e}") from e

            self.claims.release_all(app.id)
            self.apps.delete_with_deployments(app)
        logger.info(f"App {app.id} supprimée")

    def availability(self, subdomain: Optional[str] = None, namespace: Optional[str] = None) -> Availability:
        result = Availability()
        if subdomain is not None:
            result.subdomain = bool(config_resolver.SUBDOMAIN_PATTERN.match(subdomain)) and \
                self.claims.owner_of(ClaimKind.SUBDOMAIN, subdomain) is None
        if namespace is not None:
            try:
                config_resolver.validate_namespace(namespace)
            except ValidationError:
                result.namespace = False
            else:
                result.namespace = self.claims.owner_of(ClaimKind.NAMESPACE, namespace) is None
        return result

    def default_namespace(self, name: str) -> str:
        slug = re.sub(r"[^a-z0-9-]+", "-", name.lower()).strip("-")
        namespace = f"{self.namespace_prefix}{slug}"[:63].rstrip("-")
        if not slug:
            raise ValidationError(f"Impossible de dériver un namespace depuis '{name}'")
        return namespace

