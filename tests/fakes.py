"""Doublures des clients externes : enregistrent les appels au lieu de toucher un cluster"""
from types import SimpleNamespace
from typing import List, Optional


class FakeK8sClient:
    def __init__(self):
        self.pods: List[SimpleNamespace] = []
        self.unreachable = False
        self.applied = []
        self.scaled = []
        self.deleted_namespaces = []

    def pod_selector(self, app, deployment, deployment_config) -> str:
        return f"deployment-id={deployment.id}"

    def list_pods(self, namespace: str, label_selector: str):
        if self.unreachable:
            raise ConnectionError("cluster injoignable")
        return list(self.pods)

    def apply_workload(self, app, deployment, deployment_config, image_ref: str) -> None:
        self.applied.append((app.id, deployment.id, image_ref))

    def scale(self, app, replicas: int) -> None:
        self.scaled.append((app.id, replicas))

    def delete_namespace(self, namespace: str) -> None:
        self.deleted_namespaces.append(namespace)


class FakeBuildClient:
    def __init__(self):
        self.started = []
        self.cancelled = []

    def start_build(self, app, deployment, deployment_config, build_secret: str) -> str:
        self.started.append((deployment.id, build_secret))
        return f"build-{app.id}-{deployment.id}"

    def cancel_build(self, job_name: Optional[str]) -> None:
        self.cancelled.append(job_name)


class FakeHelmClient:
    def __init__(self):
        self.installed = []
        self.uninstalled = []

    def upgrade_install(self, release: str, namespace: str, source) -> None:
        self.installed.append((release, namespace, source.chart))

    def uninstall(self, release: str, namespace: str) -> None:
        self.uninstalled.append((release, namespace))


class FakeGitHubClient:
    def __init__(self, sha: str = "abc123", message: str = "initial commit"):
        self.sha = sha
        self.message = message

    def latest_commit(self, repository_id: int, branch: str):
        return self.sha, self.message


def make_pod(scheduled=True, ready=True, phase="Running", waiting=None, restarts=0, terminated=None,
             reason=None):
    conditions = []
    if scheduled:
        conditions.append(SimpleNamespace(type="PodScheduled", status="True"))
    conditions.append(SimpleNamespace(type="Ready", status="True" if ready else "False"))
    container = SimpleNamespace(
        name="app",
        restart_count=restarts,
        state=SimpleNamespace(waiting=SimpleNamespace(reason=waiting) if waiting else None),
        last_state=SimpleNamespace(terminated=SimpleNamespace(reason=terminated) if terminated else None),
    )
    return SimpleNamespace(status=SimpleNamespace(
        phase=phase,
        reason=reason,
        conditions=conditions,
        container_statuses=[container],
    ))
