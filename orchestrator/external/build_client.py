from kubernetes import client
from kubernetes.client.rest import ApiException
import logging
from typing import Optional

from orchestrator.core.exceptions import BuildFailure
from orchestrator.external.k8s_client import load_cluster_config

logger = logging.getLogger(__name__)


class BuildClient:
    """Builds lancés comme Jobs Kubernetes dans le namespace des builders.

    Le job rappelle `callback_url` avec le secret du déploiement une fois l'image
    poussée (ou en cas d'échec).
    """

    def __init__(
            self,
            namespace: str,
            builder_image_prefix: str,
            registry_hostname: str,
            registry_project: str,
            callback_url: str
    ):
        load_cluster_config()
        self.batch_v1 = client.BatchV1Api()
        self.namespace = namespace
        self.builder_image_prefix = builder_image_prefix
        self.registry_hostname = registry_hostname
        self.registry_project = registry_project
        self.callback_url = callback_url

    def image_destination(self, app, deployment) -> str:
        return f"{self.registry_hostname}/{self.registry_project}/{app.namespace}:{deployment.id}"

    def start_build(self, app, deployment, deployment_config, build_secret: str) -> str:
        """Crée le Job de build et retourne son nom"""
        source = deployment_config.source
        job_name = f"build-{app.id}-{deployment.id}"
        env = {
            "DEPLOYMENT_ID": str(deployment.id),
            "REPOSITORY_ID": str(source.repository_id),
            "BRANCH": source.branch,
            "COMMIT": deployment.commit_hash or "",
            "ROOT_DIR": source.root_dir,
            "DOCKERFILE_PATH": source.dockerfile_path or "",
            "IMAGE_DESTINATION": self.image_destination(app, deployment),
            "CALLBACK_URL": self.callback_url,
            "BUILD_SECRET": build_secret,
        }
        body = {
            "metadata": {
                "name": job_name,
                "labels": {"app-id": str(app.id), "deployment-id": str(deployment.id)},
            },
            "spec": {
                "backoffLimit": 0,
                "ttlSecondsAfterFinished": 3600,
                "template": {
                    "spec": {
                        "restartPolicy": "Never",
                        "containers": [{
                            "name": "builder",
                            "image": f"{self.builder_image_prefix}/{source.builder.value}:latest",
                            "env": [{"name": key, "value": value} for key, value in env.items()],
                        }],
                    },
                },
            },
        }
        try:
            self.batch_v1.create_namespaced_job(self.namespace, body)
        except ApiException as e:
            raise BuildFailure(f"Création du job {job_name} refusée: {e.reason}") from e
        logger.info(f"Job de build {job_name} créé pour le commit {deployment.commit_hash}")
        return job_name

    def cancel_build(self, job_name: Optional[str]) -> None:
        if not job_name:
            return
        try:
            self.batch_v1.delete_namespaced_job(job_name, self.namespace, propagation_policy="Background")
            logger.info(f"Job de build {job_name} supprimé")
        except ApiException as e:
            if e.status != 404:
                raise
