from kubernetes import client, config
from kubernetes.client.rest import ApiException
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def load_cluster_config():
    """Configuration in-cluster, sinon ~/.kube/config"""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        try:
            config.load_kube_config()
        except Exception as e:
            logger.error(f"Impossible de charger la configuration Kubernetes: {e}")
            raise


def workload_name(app) -> str:
    return f"app-{app.id}"


class K8sClient:
    """Applique les ressources d'une app (workload, service, ingress, volumes)"""

    def __init__(self, ingress_domain: str = "apps.local", ingress_class: Optional[str] = None):
        load_cluster_config()
        self.v1 = client.CoreV1Api()
        self.apps_v1 = client.AppsV1Api()
        self.networking_v1 = client.NetworkingV1Api()
        self.ingress_domain = ingress_domain
        self.ingress_class = ingress_class

    # === Observation ===

    def pod_selector(self, app, deployment, deployment_config) -> str:
        if deployment_config.is_workload:
            return f"deployment-id={deployment.id}"
        return f"app.kubernetes.io/instance={workload_name(app)}"

    def list_pods(self, namespace: str, label_selector: str) -> List[Any]:
        """Pods bruts (V1Pod) ; les erreurs remontent à l'appelant"""
        return self.v1.list_namespaced_pod(namespace, label_selector=label_selector).items

    # === Application ===

    def ensure_namespace(self, namespace: str) -> None:
        try:
            self.v1.read_namespace(namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            self.v1.create_namespace({"metadata": {"name": namespace}})
            logger.info(f"Namespace {namespace} créé")

    def apply_workload(self, app, deployment, deployment_config, image_ref: str) -> None:
        """Crée ou met à jour toutes les ressources du workload de l'app"""
        namespace = app.namespace
        name = workload_name(app)
        self.ensure_namespace(namespace)

        secret_env = {var.name: var.value for var in deployment_config.env if var.is_sensitive}
        self._upsert(
            read=lambda: self.v1.read_namespaced_secret(f"{name}-env", namespace),
            create=lambda body: self.v1.create_namespaced_secret(namespace, body),
            replace=lambda body: self.v1.replace_namespaced_secret(f"{name}-env", namespace, body),
            body={"metadata": {"name": f"{name}-env"}, "type": "Opaque", "stringData": secret_env},
        )

        for index, mount in enumerate(deployment_config.mounts):
            self._ensure_volume_claim(namespace, f"{name}-vol-{index}", mount.size_mib)

        body = self._deployment_body(app, deployment, deployment_config, image_ref)
        self._upsert(
            read=lambda: self.apps_v1.read_namespaced_deployment(name, namespace),
            create=lambda b: self.apps_v1.create_namespaced_deployment(namespace, b),
            replace=lambda b: self.apps_v1.patch_namespaced_deployment(name, namespace, b),
            body=body,
        )

        if deployment_config.port is not None:
            self._upsert(
                read=lambda: self.v1.read_namespaced_service(name, namespace),
                create=lambda b: self.v1.create_namespaced_service(namespace, b),
                replace=lambda b: self.v1.patch_namespaced_service(name, namespace, b),
                body={
                    "metadata": {"name": name, "labels": {"app-id": str(app.id)}},
                    "spec": {
                        "selector": {"app-id": str(app.id)},
                        "ports": [{"port": deployment_config.port, "targetPort": deployment_config.port}],
                    },
                },
            )

        if deployment_config.create_ingress:
            self._upsert(
                read=lambda: self.networking_v1.read_namespaced_ingress(name, namespace),
                create=lambda b: self.networking_v1.create_namespaced_ingress(namespace, b),
                replace=lambda b: self.networking_v1.replace_namespaced_ingress(name, namespace, b),
                body=self._ingress_body(name, deployment_config),
            )
        else:
            self._delete_ignoring_missing(lambda: self.networking_v1.delete_namespaced_ingress(name, namespace))

        logger.info(f"Workload {namespace}/{name} appliqué avec l'image {image_ref}")

    def scale(self, app, replicas: int) -> None:
        self.apps_v1.patch_namespaced_deployment_scale(
            workload_name(app), app.namespace, {"spec": {"replicas": replicas}}
        )
        logger.info(f"Workload {app.namespace}/{workload_name(app)} mis à l'échelle: {replicas}")

    def delete_namespace(self, namespace: str) -> None:
        self._delete_ignoring_missing(lambda: self.v1.delete_namespace(namespace))
        logger.info(f"Suppression du namespace {namespace} demandée")

    # === Manifestes ===

    def _deployment_body(self, app, deployment, deployment_config, image_ref: str) -> Dict[str, Any]:
        name = workload_name(app)
        labels = {"app-id": str(app.id), "deployment-id": str(deployment.id)}

        env = []
        for var in deployment_config.env:
            if var.is_sensitive:
                env.append({
                    "name": var.name,
                    "valueFrom": {"secretKeyRef": {"name": f"{name}-env", "key": var.name}},
                })
            else:
                env.append({"name": var.name, "value": var.value})

        container: Dict[str, Any] = {"name": "app", "image": image_ref, "env": env}
        if deployment_config.port is not None:
            container["ports"] = [{"containerPort": deployment_config.port}]
            container["readinessProbe"] = {
                "tcpSocket": {"port": deployment_config.port},
                "periodSeconds": 2,
            }
        requests = {}
        if deployment_config.cpu:
            requests["cpu"] = deployment_config.cpu
        if deployment_config.memory:
            requests["memory"] = deployment_config.memory
        if requests:
            container["resources"] = {"requests": requests}

        lifecycle = {}
        if deployment_config.pre_stop:
            lifecycle["preStop"] = {"exec": {"command": ["/bin/sh", "-c", deployment_config.pre_stop]}}
        if deployment_config.post_start:
            lifecycle["postStart"] = {"exec": {"command": ["/bin/sh", "-c", deployment_config.post_start]}}
        if lifecycle:
            container["lifecycle"] = lifecycle

        volumes = []
        mounts = []
        for index, mount in enumerate(deployment_config.mounts):
            volumes.append({"name": f"vol-{index}", "persistentVolumeClaim": {"claimName": f"{name}-vol-{index}"}})
            mounts.append({"name": f"vol-{index}", "mountPath": mount.path})
        if mounts:
            container["volumeMounts"] = mounts

        annotations = {}
        if deployment_config.collect_logs:
            annotations["orchestrator/collect-logs"] = "true"

        return {
            "metadata": {"name": name, "labels": {"app-id": str(app.id)}},
            "spec": {
                "replicas": deployment_config.replicas,
                "selector": {"matchLabels": {"app-id": str(app.id)}},
                "template": {
                    "metadata": {"labels": labels, "annotations": annotations},
                    "spec": {"containers": [container], "volumes": volumes},
                },
            },
        }

    def _ingress_body(self, name: str, deployment_config) -> Dict[str, Any]:
        spec: Dict[str, Any] = {
            "rules": [{
                "host": f"{deployment_config.subdomain}.{self.ingress_domain}",
                "http": {"paths": [{
                    "path": "/",
                    "pathType": "Prefix",
                    "backend": {"service": {"name": name, "port": {"number": deployment_config.port}}},
                }]},
            }],
        }
        if self.ingress_class:
            spec["ingressClassName"] = self.ingress_class
        return {"metadata": {"name": name}, "spec": spec}

    def _ensure_volume_claim(self, namespace: str, claim_name: str, size_mib: int) -> None:
        try:
            self.v1.read_namespaced_persistent_volume_claim(claim_name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            self.v1.create_namespaced_persistent_volume_claim(namespace, {
                "metadata": {"name": claim_name},
                "spec": {
                    "accessModes": ["ReadWriteOnce"],
                    "resources": {"requests": {"storage": f"{size_mib}Mi"}},
                },
            })

    @staticmethod
    def _upsert(read, create, replace, body) -> None:
        try:
            read()
        except ApiException as e:
            if e.status != 404:
                raise
            create(body)
            return
        replace(body)

    @staticmethod
    def _delete_ignoring_missing(delete) -> None:
        try:
            delete()
        except ApiException as e:
            if e.status != 404:
                raise
