from functools import lru_cache
from sqlalchemy.orm import Session
from fastapi import Depends

from orchestrator.config import settings
from orchestrator.core.crypto import SecretBox
from orchestrator.core.database import get_db, db_manager
from orchestrator.external.build_client import BuildClient
from orchestrator.external.github_client import GitHubClient
from orchestrator.external.helm_client import HelmClient
from orchestrator.external.k8s_client import K8sClient
from orchestrator.repositories.user_repository import UserRepository
from orchestrator.services.app_service import AppService
from orchestrator.services.auth_service import AuthService
from orchestrator.services.deployment_service import DeploymentService
from orchestrator.services.deployment_state_machine import DeploymentStateMachine
from orchestrator.services.rollout_tracker import RolloutTracker
from orchestrator.workers.rollout_worker import RolloutWorker


# === CLIENTS EXTERNES ===
@lru_cache()
def get_k8s_client() -> K8sClient:
    return K8sClient(
        ingress_domain=settings.INGRESS_DOMAIN,
        ingress_class=settings.INGRESS_CLASS
    )


@lru_cache()
def get_build_client() -> BuildClient:
    return BuildClient(
        namespace=settings.BUILDER_NAMESPACE,
        builder_image_prefix=settings.BUILDER_IMAGE_PREFIX,
        registry_hostname=settings.REGISTRY_HOSTNAME,
        registry_project=settings.REGISTRY_PROJECT,
        callback_url=f"{settings.BASE_URL.rstrip('/')}/api/v1/deployments/build-callback"
    )


@lru_cache()
def get_helm_client() -> HelmClient:
    return HelmClient()


@lru_cache()
def get_github_client() -> GitHubClient:
    return GitHubClient(api_url=settings.GITHUB_API_URL, token=settings.GITHUB_TOKEN)


@lru_cache()
def get_secret_box() -> SecretBox:
    return SecretBox(settings.FIELD_ENCRYPTION_KEY)


# === REPOSITORIES ===
def get_user_repository(db: Session = Depends(get_db)) -> UserRepository:
    """Factory pour le repository des utilisateurs"""
    return UserRepository(db)


# === SERVICES ===
def get_auth_service(
        user_repo: UserRepository = Depends(get_user_repository)
) -> AuthService:
    """Factory pour le service d'authentification"""
    return AuthService(
        user_repository=user_repo,
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        access_token_expire_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )


def get_state_machine(
        db: Session = Depends(get_db),
        k8s_client: K8sClient = Depends(get_k8s_client),
        build_client: BuildClient = Depends(get_build_client),
        helm_client: HelmClient = Depends(get_helm_client),
        secret_box: SecretBox = Depends(get_secret_box)
) -> DeploymentStateMachine:
    return DeploymentStateMachine(db, k8s_client, build_client, helm_client, secret_box)


def get_deployment_service(
        db: Session = Depends(get_db),
        state_machine: DeploymentStateMachine = Depends(get_state_machine),
        secret_box: SecretBox = Depends(get_secret_box),
        github_client: GitHubClient = Depends(get_github_client)
) -> DeploymentService:
    return DeploymentService(db, state_machine, secret_box, github_client=github_client)


def get_app_service(
        db: Session = Depends(get_db),
        deployment_service: DeploymentService = Depends(get_deployment_service),
        k8s_client: K8sClient = Depends(get_k8s_client)
) -> AppService:
    return AppService(db, deployment_service, k8s_client, namespace_prefix=settings.NAMESPACE_PREFIX)


# === WORKERS ===
_rollout_worker_instance = None


def get_rollout_worker() -> RolloutWorker:
    """Factory pour le worker de rollout (singleton)"""
    global _rollout_worker_instance
    if _rollout_worker_instance is None:
        k8s_client = get_k8s_client()

        def state_machine_factory(db: Session) -> DeploymentStateMachine:
            return DeploymentStateMachine(db, k8s_client, get_build_client(), get_helm_client(), get_secret_box())

        _rollout_worker_instance = RolloutWorker(
            session_factory=db_manager.session_factory,
            state_machine_factory=state_machine_factory,
            tracker=RolloutTracker(k8s_client, restart_threshold=settings.CRASHLOOP_RESTART_THRESHOLD),
            tick_seconds=settings.WORKER_TICK_SECONDS,
            settle_observations=settings.ROLLOUT_SETTLE_OBSERVATIONS,
            build_timeout=settings.BUILD_TIMEOUT_SECONDS,
            rollout_timeout=settings.ROLLOUT_TIMEOUT_SECONDS,
            poll_fresh=settings.POLL_INTERVAL_FRESH,
            poll_scheduled=settings.POLL_INTERVAL_SCHEDULED,
            poll_stable=settings.POLL_INTERVAL_STABLE,
            backoff_max=settings.POLL_BACKOFF_MAX
        )
    return _rollout_worker_instance


def peek_rollout_worker():
    """Le worker s'il a été créé, sans le créer"""
    return _rollout_worker_instance
