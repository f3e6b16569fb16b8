"""Observation de la santé d'un rollout.

Le tracker n'a pas d'état propre : chaque appel re-interroge l'API Kubernetes et
résume les pods du déploiement en un PodStatus.
"""
import logging
from typing import Iterable, Optional

from orchestrator.api.schemas.config import DeploymentConfig
from orchestrator.api.schemas.deployment import PodPhase, PodStatus
from orchestrator.core.exceptions import TransientObservationError

logger = logging.getLogger(__name__)

# Échecs que Kubernetes ne résoudra pas seul
FATAL_WAITING_REASONS = frozenset({
    "ImagePullBackOff",
    "ErrImagePull",
    "InvalidImageName",
    "CreateContainerConfigError",
    "CreateContainerError",
})
# Échecs fatals seulement au-delà du seuil de redémarrages
RESTART_FAILURE_REASONS = frozenset({"CrashLoopBackOff", "OOMKilled", "Error"})


class RolloutTracker:
    def __init__(self, k8s_client, restart_threshold: int = 3):
        self.k8s_client = k8s_client
        self.restart_threshold = restart_threshold

    def observe(self, app, deployment, config: DeploymentConfig) -> PodStatus:
        """Interroge la plateforme et résume l'état des pods du déploiement"""
        selector = self.k8s_client.pod_selector(app, deployment, config)
        try:
            pods = self.k8s_client.list_pods(app.namespace, selector)
        except Exception as e:
            logger.warning(f"Observation impossible pour le déploiement {deployment.id}: {e}")
            raise TransientObservationError(f"Plateforme injoignable: {e}") from e

        expected = config.replicas if config.is_workload else None
        return summarize_pods(pods, expected, self.restart_threshold)


def summarize_pods(pods: Iterable, expected: Optional[int], restart_threshold: int = 3) -> PodStatus:
    """Agrège une liste de V1Pod.

    total est le nombre de replicas configuré, ou le nombre de pods observés pour
    les releases helm (expected=None).
    """
    pods = list(pods)
    scheduled = 0
    ready = 0
    failure = None

    for pod in pods:
        status = pod.status
        if status is None:
            continue
        if _condition(status, "PodScheduled"):
            scheduled += 1
        if _condition(status, "Ready"):
            ready += 1
        if failure is None:
            failure = _failure_reason(pod, restart_threshold)

    total = expected if expected is not None else len(pods)

    if failure is not None:
        phase = PodPhase.FAILED
    elif total > 0 and ready >= total:
        phase = PodPhase.READY
    elif scheduled > 0:
        phase = PodPhase.PROGRESSING
    else:
        phase = PodPhase.PENDING

    return PodStatus(scheduled=scheduled, ready=min(ready, total), total=total, phase=phase, reason=failure)


def next_poll_interval(status: PodStatus, fresh: float, scheduled: float, stable: float) -> float:
    """Cadence de polling : plus le rollout est proche de la fin, plus on observe souvent"""
    if status.is_ready:
        return stable
    if status.all_scheduled:
        return scheduled
    return fresh


def _condition(status, condition_type: str) -> bool:
    return any(
        condition.type == condition_type and condition.status == "True"
        for condition in (status.conditions or [])
    )


def _failure_reason(pod, restart_threshold: int) -> Optional[str]:
    status = pod.status
    if status.phase == "Failed":
        return status.reason or "Pod en échec"

    for container in status.container_statuses or []:
        state = container.state
        waiting = state.waiting if state is not None else None
        if waiting is not None and waiting.reason in FATAL_WAITING_REASONS:
            return f"{container.name}: {waiting.reason}"

        restarts = container.restart_count or 0
        if restarts < restart_threshold:
            continue
        if waiting is not None and waiting.reason in RESTART_FAILURE_REASONS:
            return f"{container.name}: {waiting.reason} ({restarts} redémarrages)"
        last = container.last_state.terminated if container.last_state is not None else None
        if last is not None and last.reason in RESTART_FAILURE_REASONS:
            return f"{container.name}: {last.reason} ({restarts} redémarrages)"
    return None
