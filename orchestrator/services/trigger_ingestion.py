"""Normalisation des déclencheurs en DeploymentRequest.

Trois origines : un événement du fournisseur git (push, workflow_run), un redeploy
manuel (avec ou sans déploiement modèle) et une mise à jour directe de config.
Un refus est une valeur (`Rejected`), pas une exception.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from orchestrator.api.schemas.config import ConfigDelta, DeploymentConfig, SourceKind, TriggerEvent
from orchestrator.models.app import App
from orchestrator.models.deployment import TemplateMode, TriggerKind
from orchestrator.services import cd_gate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitEvent:
    """Événement git déjà extrait du payload du fournisseur"""

    event: TriggerEvent
    repository_id: int
    branch: str
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    # workflow_run uniquement
    action: Optional[str] = None
    workflow_id: Optional[int] = None
    workflow_run_id: Optional[int] = None
    conclusion: Optional[str] = None


@dataclass(frozen=True)
class DeploymentRequest:
    app_id: int
    trigger_kind: TriggerKind
    delta: Optional[ConfigDelta] = None
    template_deployment_id: Optional[int] = None
    mode: TemplateMode = TemplateMode.REUSE_BUILD
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    workflow_run_id: Optional[int] = None
    awaiting_workflow: bool = False


@dataclass(frozen=True)
class WorkflowCompletion:
    """Fin d'un workflow_run : libère ou annule le déploiement qui l'attend"""

    app_id: int
    workflow_run_id: int
    success: bool


@dataclass(frozen=True)
class Rejected:
    reason: str


IngestResult = Union[DeploymentRequest, WorkflowCompletion, Rejected]


def ingest_git_event(app: App, config: Optional[DeploymentConfig], event: GitEvent) -> IngestResult:
    if config is None or config.kind != SourceKind.GIT:
        return _reject(app, "L'app n'est pas liée à un dépôt git")

    source = config.source
    if event.repository_id != source.repository_id:
        return _reject(app, "Dépôt non suivi par cette app")
    if event.branch != source.branch:
        return _reject(app, f"Branche '{event.branch}' non suivie (attendue: '{source.branch}')")
    if event.event != source.event:
        return _reject(app, f"Événement '{event.event.value}' non suivi")
    if event.event == TriggerEvent.WORKFLOW_RUN and event.workflow_id != source.event_id:
        return _reject(app, f"Workflow {event.workflow_id} non suivi")

    trigger_kind = TriggerKind.GIT_PUSH if event.event == TriggerEvent.PUSH else TriggerKind.GIT_WORKFLOW_RUN
    if not cd_gate.is_allowed(app.cd_enabled, trigger_kind):
        return _reject(app, "Déploiement continu désactivé")

    if event.event == TriggerEvent.PUSH:
        return DeploymentRequest(
            app_id=app.id,
            trigger_kind=trigger_kind,
            commit_hash=event.commit_hash,
            commit_message=event.commit_message,
        )

    if event.workflow_run_id is None:
        return _reject(app, "workflow_run sans identifiant d'exécution")
    if event.action == "requested":
        return DeploymentRequest(
            app_id=app.id,
            trigger_kind=trigger_kind,
            commit_hash=event.commit_hash,
            commit_message=event.commit_message,
            workflow_run_id=event.workflow_run_id,
            awaiting_workflow=True,
        )
    if event.action == "completed":
        return WorkflowCompletion(
            app_id=app.id,
            workflow_run_id=event.workflow_run_id,
            success=event.conclusion == "success",
        )
    return _reject(app, f"Action workflow_run '{event.action}' ignorée")


def ingest_manual(
        app: App,
        delta: Optional[ConfigDelta] = None,
        template_deployment_id: Optional[int] = None,
        mode: TemplateMode = TemplateMode.REUSE_BUILD,
        commit_hash: Optional[str] = None
) -> DeploymentRequest:
    # Toujours autorisé : le CD ne filtre que les déclencheurs automatiques
    return DeploymentRequest(
        app_id=app.id,
        trigger_kind=TriggerKind.MANUAL,
        delta=delta,
        template_deployment_id=template_deployment_id,
        mode=mode,
        commit_hash=commit_hash,
    )


def ingest_config_update(app: App, delta: ConfigDelta, source_deployment_id: Optional[int]) -> IngestResult:
    """Nouvelle config appliquée sur l'artefact du déploiement actif"""
    if source_deployment_id is None:
        return _reject(app, "Aucun déploiement sur lequel appliquer la configuration")
    return DeploymentRequest(
        app_id=app.id,
        trigger_kind=TriggerKind.CONFIG_UPDATE,
        delta=delta,
        template_deployment_id=source_deployment_id,
        mode=TemplateMode.REUSE_BUILD,
    )


def _reject(app: App, reason: str) -> Rejected:
    logger.info(f"Déclencheur refusé pour l'app {app.id}: {reason}")
    return Rejected(reason)
