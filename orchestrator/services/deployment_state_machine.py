"""Machine à états des déploiements.

QUEUED -> PENDING -> BUILDING -> DEPLOYING -> COMPLETE -> STOPPED, avec ERROR
atteignable depuis PENDING, BUILDING et DEPLOYING, et CANCELLED depuis QUEUED,
PENDING et BUILDING. Chaque transition est un UPDATE conditionnel sur le statut
attendu : une transition concurrente perdue est simplement ignorée.

Au plus un déploiement par app est en cours (PENDING, BUILDING ou DEPLOYING).
L'admission d'un nouveau déploiement annule les déploiements encore annulables ;
un déploiement DEPLOYING n'est jamais interrompu, le nouveau attend en QUEUED.
"""
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from orchestrator.api.schemas.config import SourceKind
from orchestrator.api.schemas.deployment import PodStatus
from orchestrator.core.crypto import SecretBox
from orchestrator.core.exceptions import InvalidTransitionError, OrchestratorError
from orchestrator.core.locks import app_locks
from orchestrator.core.logging import deployment_logger
from orchestrator.external.k8s_client import workload_name
from orchestrator.models.app import App
from orchestrator.models.deployment import CANCELLABLE_STATUSES, Deployment, DeploymentStatus
from orchestrator.repositories.app_repository import AppRepository
from orchestrator.repositories.claim_repository import ClaimRepository
from orchestrator.repositories.deployment_repository import DeploymentRepository
from orchestrator.services.active_deployment_selector import ActiveDeploymentSelector

logger = logging.getLogger(__name__)

S = DeploymentStatus

TRANSITIONS = {
    S.QUEUED: {S.PENDING, S.CANCELLED},
    S.PENDING: {S.BUILDING, S.DEPLOYING, S.ERROR, S.CANCELLED},
    S.BUILDING: {S.DEPLOYING, S.ERROR, S.CANCELLED},
    S.DEPLOYING: {S.COMPLETE, S.ERROR},
    S.COMPLETE: {S.STOPPED},
}


def can_transition(current: DeploymentStatus, target: DeploymentStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


class DeploymentStateMachine:
    def __init__(self, db: Session, k8s_client, build_client, helm_client, secret_box: SecretBox):
        self.db = db
        self.apps = AppRepository(db)
        self.deployments = DeploymentRepository(db)
        self.claims = ClaimRepository(db)
        self.selector = ActiveDeploymentSelector(self.apps, self.deployments, self.claims)
        self.k8s_client = k8s_client
        self.build_client = build_client
        self.helm_client = helm_client
        self.box = secret_box

    def transition(self, deployment: Deployment, target: DeploymentStatus, commit: bool = True,
                   **fields: Any) -> bool:
        current = deployment.status
        if not can_transition(current, target):
            raise InvalidTransitionError(current.value, target.value)

        done = self.deployments.compare_and_set_status(deployment.id, [current], target, commit=commit, **fields)
        log = deployment_logger(logger, deployment)
        if done:
            log.info(f"{current.value} -> {target.value}")
        else:
            self.db.refresh(deployment)
            log.info(f"Transition {current.value} -> {target.value} ignorée, statut actuel {deployment.status.value}")
        return done

    # === Admission ===

    def admit(self, app: App, values: Dict[str, Any], sensitive_names: Iterable[str] = ()) -> Deployment:
        """Crée un déploiement QUEUED et applique la règle d'un seul déploiement en cours"""
        with app_locks.for_app(app.id):
            self.apps.lock(app.id)
            in_flight = self.deployments.in_flight(app.id)
            blocked = any(d.status == S.DEPLOYING for d in in_flight)

            deployment = self.deployments.create({
                **values,
                "app_id": app.id,
                "status": S.QUEUED,
                "status_changed_at": datetime.utcnow(),
            }, commit=False)

            superseded = []
            for previous in in_flight:
                if previous.status in CANCELLABLE_STATUSES and self.transition(
                        previous, S.CANCELLED, commit=False,
                        status_reason=f"Remplacé par le déploiement {deployment.id}"):
                    superseded.append(previous)

            self.apps.add_sensitive_names(app, sensitive_names, commit=False)
            self.db.commit()

            log = deployment_logger(logger, deployment)
            log.info(f"Déploiement créé ({deployment.trigger_kind.value}), {len(superseded)} remplacé(s)")
            for previous in superseded:
                self.cancel_build(previous)

            if blocked:
                log.info("Un déploiement est en cours de rollout, mise en file d'attente")
                return deployment

            if self.transition(deployment, S.PENDING):
                self.start(deployment)
            return deployment

    def promote_queued(self, app_id: int) -> Optional[Deployment]:
        """Admet le plus récent des déploiements QUEUED si plus rien n'est en cours"""
        with app_locks.for_app(app_id):
            in_flight = self.deployments.in_flight(app_id)
            if not in_flight or any(d.status != S.QUEUED for d in in_flight):
                return None

            newest = in_flight[-1]
            for older in in_flight[:-1]:
                self.transition(older, S.CANCELLED, status_reason=f"Remplacé par le déploiement {newest.id}")

            if not self.transition(newest, S.PENDING):
                return None
            self.start(newest)
            return newest

    # === Étapes ===

    def start(self, deployment: Deployment) -> None:
        """Lance le build ou le rollout d'un déploiement PENDING"""
        log = deployment_logger(logger, deployment)
        if deployment.status != S.PENDING:
            return
        if deployment.awaiting_workflow:
            log.info("En attente de la fin du workflow")
            return

        app = self.apps.get_by_id(deployment.app_id)
        config = self.box.open_config(deployment.config)

        if config.requires_build and not deployment.image_ref:
            build_secret = secrets.token_urlsafe(24)
            if not self.transition(deployment, S.BUILDING, build_secret=build_secret):
                return
            try:
                job_name = self.build_client.start_build(app, deployment, config, build_secret)
            except Exception as e:
                log.error(f"Impossible de lancer le build: {e}")
                self.fail(deployment, f"Build impossible: {e}")
                return
            self.deployments.save(deployment, build_job_id=job_name)
            # Annulé pendant la création du job
            if deployment.status == S.CANCELLED:
                self.cancel_build(deployment)
            return

        image_ref = deployment.image_ref
        if image_ref is None and config.kind == SourceKind.IMAGE:
            image_ref = config.source.image
        if self.transition(deployment, S.DEPLOYING, image_ref=image_ref):
            self._apply(app, deployment, config)

    def release_workflow(self, app_id: int, workflow_run_id: int, success: bool) -> Optional[Deployment]:
        deployment = self.deployments.find_awaiting_workflow(app_id, workflow_run_id)
        if deployment is None:
            logger.info(f"Aucun déploiement n'attend le workflow {workflow_run_id} (app {app_id})")
            return None

        if success:
            self.deployments.save(deployment, awaiting_workflow=False)
            self.start(deployment)
        else:
            self.transition(deployment, S.CANCELLED, status_reason="Workflow terminé sans succès",
                            awaiting_workflow=False)
            self.promote_queued(app_id)
        return deployment

    def on_build_result(self, deployment: Deployment, success: bool, image_ref: Optional[str] = None,
                        reason: Optional[str] = None) -> bool:
        log = deployment_logger(logger, deployment)
        if deployment.status != S.BUILDING:
            log.info(f"Résultat de build ignoré, statut {deployment.status.value}")
            return False

        if not success:
            self.fail(deployment, f"Échec du build: {reason or 'raison inconnue'}")
            return True

        if self.transition(deployment, S.DEPLOYING, image_ref=image_ref):
            app = self.apps.get_by_id(deployment.app_id)
            self._apply(app, deployment, self.box.open_config(deployment.config))
        return True

    def apply_pod_status(self, deployment: Deployment, pod_status: PodStatus, settled: bool = True) -> None:
        """Enregistre une observation et en tire la transition éventuelle.

        `settled` indique que l'état prêt a été confirmé par assez d'observations.
        """
        if deployment.status not in (S.DEPLOYING, S.COMPLETE):
            return
        self.deployments.save(deployment, pod_status=pod_status.model_dump(mode="json"))
        if deployment.status != S.DEPLOYING:
            return

        if pod_status.failed:
            self.fail(deployment, f"Rollout en échec: {pod_status.reason}")
        elif pod_status.is_ready and settled:
            if self.transition(deployment, S.COMPLETE):
                self.selector.promote(deployment)
                self.promote_queued(deployment.app_id)

    def fail(self, deployment: Deployment, reason: str) -> bool:
        if not can_transition(deployment.status, S.ERROR):
            return False
        done = self.transition(deployment, S.ERROR, status_reason=reason)
        if done:
            deployment_logger(logger, deployment).warning(reason)
            self.promote_queued(deployment.app_id)
        return done

    def expire(self, deployment: Deployment, reason: str) -> bool:
        """Délai dépassé (build ou rollout)"""
        if deployment.status == S.BUILDING:
            self.cancel_build(deployment)
        return self.fail(deployment, reason)

    # === Actions utilisateur ===

    def cancel(self, deployment: Deployment) -> None:
        if deployment.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError(deployment.status.value, S.CANCELLED.value)

        with app_locks.for_app(deployment.app_id):
            if not self.transition(deployment, S.CANCELLED, status_reason="Annulé par l'utilisateur"):
                raise InvalidTransitionError(deployment.status.value, S.CANCELLED.value)
        self.cancel_build(deployment)
        self.promote_queued(deployment.app_id)

    def stop(self, deployment: Deployment) -> None:
        """COMPLETE -> STOPPED : le workload ne sert plus de trafic"""
        if deployment.status != S.COMPLETE:
            raise InvalidTransitionError(deployment.status.value, S.STOPPED.value)

        app = self.apps.get_by_id(deployment.app_id)
        if app.active_deployment_id == deployment.id:
            config = self.box.open_config(deployment.config)
            try:
                if config.is_workload:
                    self.k8s_client.scale(app, 0)
                else:
                    self.helm_client.uninstall(workload_name(app), app.namespace)
            except Exception as e:
                deployment_logger(logger, deployment).error(f"Arrêt du workload impossible: {e}")
                raise OrchestratorError(f"Arrêt du workload impossible: {e}") from e

        if not self.transition(deployment, S.STOPPED, status_reason="Arrêté par l'utilisateur"):
            raise InvalidTransitionError(deployment.status.value, S.STOPPED.value)

    # === Interne ===

    def _apply(self, app: App, deployment: Deployment, config) -> None:
        try:
            if config.is_workload:
                self.k8s_client.apply_workload(app, deployment, config, deployment.image_ref)
            else:
                self.helm_client.upgrade_install(workload_name(app), app.namespace, config.source)
        except Exception as e:
            deployment_logger(logger, deployment).error(f"Application sur le cluster impossible: {e}")
            self.fail(deployment, f"Application sur le cluster impossible: {e}")

    def cancel_build(self, deployment: Deployment) -> None:
        if not deployment.build_job_id:
            return
        try:
            self.build_client.cancel_build(deployment.build_job_id)
        except Exception as e:
            deployment_logger(logger, deployment).warning(f"Suppression du job de build impossible: {e}")
