import logging
import secrets
from typing import List, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from orchestrator.api.schemas.config import ConfigDelta, DeploymentConfig, SourceKind
from orchestrator.api.schemas.deployment import DeploymentCreate, DeploymentPage, DeploymentResponse
from orchestrator.core.crypto import SecretBox
from orchestrator.core.exceptions import (
    AppNotFoundError,
    DeploymentNotFoundError,
    OrchestratorError,
    PermissionDeniedError,
    ValidationError,
)
from orchestrator.core.locks import app_locks
from orchestrator.models.app import App
from orchestrator.models.claim import ClaimKind
from orchestrator.models.deployment import Deployment, DeploymentStatus
from orchestrator.models.user import User, UserRole
from orchestrator.repositories.app_repository import AppRepository
from orchestrator.repositories.claim_repository import ClaimRepository
from orchestrator.repositories.deployment_repository import DeploymentRepository
from orchestrator.repositories.organization_repository import OrganizationRepository
from orchestrator.services import config_resolver, trigger_ingestion
from orchestrator.services.deployment_state_machine import DeploymentStateMachine
from orchestrator.services.trigger_ingestion import DeploymentRequest, GitEvent, Rejected, WorkflowCompletion

logger = logging.getLogger(__name__)


class DeploymentService:
    """Point d'entrée de l'API : résolution, admission et consultation des déploiements"""

    def __init__(self, db: Session, state_machine: DeploymentStateMachine, secret_box: SecretBox,
                 github_client=None):
        self.db = db
        self.state_machine = state_machine
        self.box = secret_box
        self.github_client = github_client
        self.apps = AppRepository(db)
        self.deployments = DeploymentRepository(db)
        self.claims = ClaimRepository(db)
        self.organizations = OrganizationRepository(db)

    # === Accès ===

    def get_app(self, app_id: int, user: Optional[User] = None) -> App:
        app = self.apps.get_by_id(app_id)
        if app is None:
            raise AppNotFoundError(app_id)
        if user is not None and user.role != UserRole.ADMIN:
            if not self.organizations.is_member(app.organization_id, user.id):
                # Même réponse qu'une app inexistante
                raise AppNotFoundError(app_id)
        return app

    def ensure_member(self, user: User, organization_id: int) -> None:
        if user.role == UserRole.ADMIN:
            return
        if not self.organizations.is_member(organization_id, user.id):
            raise PermissionDeniedError("Vous n'êtes pas membre de cette organisation")

    def get_deployment(self, app: App, deployment_id: int) -> Deployment:
        deployment = self.deployments.get_for_app(app.id, deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(deployment_id)
        return deployment

    def list_deployments(self, app: App, page: int = 0, length: int = 20) -> DeploymentPage:
        items, total = self.deployments.list_for_app(app.id, page, length)
        return DeploymentPage(
            items=[self.to_response(item) for item in items],
            page=page,
            length=length,
            total=total,
        )

    def current_deployment(self, app: App) -> Optional[Deployment]:
        """Déploiement de référence pour la config de l'app : l'actif, sinon le plus récent"""
        if app.active_deployment_id is not None:
            return self.deployments.get_by_id(app.active_deployment_id)
        items, _ = self.deployments.list_for_app(app.id, 0, 1)
        return items[0] if items else None

    def current_config(self, app: App) -> Optional[DeploymentConfig]:
        deployment = self.current_deployment(app)
        return self.box.open_config(deployment.config) if deployment else None

    def to_response(self, deployment: Deployment) -> DeploymentResponse:
        config = self.box.open_config(deployment.config)
        return DeploymentResponse(
            id=deployment.id,
            app_id=deployment.app_id,
            status=deployment.status,
            status_reason=deployment.status_reason,
            trigger_kind=deployment.trigger_kind,
            template_deployment_id=deployment.template_deployment_id,
            template_mode=deployment.template_mode,
            commit_hash=deployment.commit_hash,
            commit_message=deployment.commit_message,
            image_ref=deployment.image_ref,
            awaiting_workflow=deployment.awaiting_workflow,
            pod_status=deployment.pod_status,
            config=config.redacted(),
            created_at=deployment.created_at,
            status_changed_at=deployment.status_changed_at,
        )

    # === Création ===

    def create(self, app: App, payload: DeploymentCreate) -> Deployment:
        delta = payload.delta
        if payload.config is not None:
            delta = ConfigDelta.model_validate(payload.config.model_dump(mode="json"))
        request = trigger_ingestion.ingest_manual(
            app,
            delta=delta,
            template_deployment_id=payload.template_deployment_id,
            mode=payload.mode,
            commit_hash=payload.commit_hash,
        )
        return self.submit(request)

    def update_config(self, app: App, delta: ConfigDelta) -> Deployment:
        current = self.current_deployment(app)
        result = trigger_ingestion.ingest_config_update(app, delta, current.id if current else None)
        if isinstance(result, Rejected):
            raise ValidationError(result.reason)
        return self.submit(result)

    def submit(self, request: DeploymentRequest) -> Deployment:
        app = self.get_app(request.app_id)
        with app_locks.for_app(app.id):
            current = self.current_deployment(app)
            current_config = self.box.open_config(current.config) if current else None

            template = None
            template_config = None
            if request.template_deployment_id is not None:
                template = self.get_deployment(app, request.template_deployment_id)
                template_config = self.box.open_config(template.config)

            config = config_resolver.resolve(
                current_config,
                request.delta,
                template_config,
                request.mode,
                locked_sensitive_names=app.sensitive_env_names or [],
                subdomain_owner=lambda subdomain: self.claims.owner_of(ClaimKind.SUBDOMAIN, subdomain),
                app_id=app.id,
            )
            if config.is_workload and config.create_ingress:
                self.claims.claim(ClaimKind.SUBDOMAIN, config.subdomain, app.id)

            values = self._source_pointer(request, config, template, template_config)
            values.update(
                config=self.box.seal_config(config),
                trigger_kind=request.trigger_kind,
                template_deployment_id=template.id if template is not None else None,
                template_mode=request.mode if template is not None else None,
                workflow_run_id=request.workflow_run_id,
                awaiting_workflow=request.awaiting_workflow,
            )
            return self.state_machine.admit(app, values, sensitive_names=config.sensitive_names())

    def _source_pointer(self, request: DeploymentRequest, config: DeploymentConfig,
                        template: Optional[Deployment], template_config: Optional[DeploymentConfig]) -> dict:
        commit_hash = request.commit_hash
        commit_message = request.commit_message
        image_ref = None

        if config.kind == SourceKind.IMAGE:
            image_ref = config.source.image
        elif config.kind == SourceKind.GIT:
            if template is not None and template_config.kind == SourceKind.GIT:
                same_ref = (template_config.source.repository_id == config.source.repository_id
                            and template_config.source.branch == config.source.branch)
                if commit_hash is None and same_ref:
                    commit_hash = template.commit_hash
                    commit_message = template.commit_message
                commit_changed = commit_hash != template.commit_hash
                if not config_resolver.needs_build(template_config, template.image_ref, config, commit_changed):
                    image_ref = template.image_ref
            if commit_hash is None and not request.awaiting_workflow and self.github_client is not None:
                commit_hash, commit_message = self._latest_commit(config)

        return {"commit_hash": commit_hash, "commit_message": commit_message, "image_ref": image_ref}

    def _latest_commit(self, config: DeploymentConfig) -> Tuple[Optional[str], Optional[str]]:
        try:
            return self.github_client.latest_commit(config.source.repository_id, config.source.branch)
        except requests.RequestException as e:
            logger.warning(f"Commit de tête introuvable, build sur la branche {config.source.branch}: {e}")
            return None, None

    # === Déclencheurs externes ===

    def handle_git_event(self, event: GitEvent) -> List[Tuple[int, object]]:
        """Distribue un événement git à toutes les apps qui suivent ce dépôt.

        Chaque app reçoit un Deployment ou un Rejected ; l'échec d'une app
        n'empêche pas les suivantes de recevoir l'événement.
        """
        results = []
        for app in self.apps.get_all_apps():
            app_id = app.id
            try:
                result = self._dispatch_git_event(app, event)
            except OrchestratorError as e:
                self.db.rollback()
                logger.exception(f"Événement git non traité pour l'app {app_id}: {e}")
                result = Rejected(str(e))
            if result is not None:
                results.append((app_id, result))
        return results

    def _dispatch_git_event(self, app: App, event: GitEvent):
        config = self.current_config(app)
        if config is None or config.kind != SourceKind.GIT:
            return None
        if config.source.repository_id != event.repository_id:
            return None

        result = trigger_ingestion.ingest_git_event(app, config, event)
        if isinstance(result, DeploymentRequest):
            return self.submit(result)
        if isinstance(result, WorkflowCompletion):
            deployment = self.state_machine.release_workflow(result.app_id, result.workflow_run_id, result.success)
            if deployment is None:
                return Rejected(f"Aucun déploiement n'attend le workflow {result.workflow_run_id}")
            if deployment.status == DeploymentStatus.CANCELLED:
                return Rejected(f"Workflow {result.workflow_run_id} terminé sans succès, "
                                f"déploiement {deployment.id} annulé")
            return deployment
        return result

    def build_callback(self, deployment_id: int, build_secret: Optional[str], success: bool,
                       image_ref: Optional[str] = None, reason: Optional[str] = None) -> Deployment:
        deployment = self.deployments.get_by_id(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(deployment_id)
        expected = deployment.build_secret
        if not build_secret or not expected or not secrets.compare_digest(build_secret, expected):
            raise PermissionDeniedError("Secret de build invalide")
        self.state_machine.on_build_result(deployment, success, image_ref=image_ref, reason=reason)
        return deployment

    # === Actions ===

    def cancel(self, app: App, deployment_id: int) -> Deployment:
        deployment = self.get_deployment(app, deployment_id)
        self.state_machine.cancel(deployment)
        return deployment

    def stop(self, app: App, deployment_id: int) -> Deployment:
        deployment = self.get_deployment(app, deployment_id)
        self.state_machine.stop(deployment)
        return deployment
