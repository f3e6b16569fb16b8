from types import SimpleNamespace

import pytest

from orchestrator.api.schemas.config import DeploymentConfig, HelmSource, ImageSource
from orchestrator.api.schemas.deployment import PodPhase, PodStatus
from orchestrator.core.exceptions import TransientObservationError
from orchestrator.services.rollout_tracker import RolloutTracker, next_poll_interval, summarize_pods
from tests.fakes import FakeK8sClient, make_pod


class TestSummarizePods:
    def test_all_ready(self):
        status = summarize_pods([make_pod(), make_pod()], expected=2)
        assert status == PodStatus(scheduled=2, ready=2, total=2, phase=PodPhase.READY)
        assert status.is_ready

    def test_no_pods_yet(self):
        status = summarize_pods([], expected=2)
        assert status.phase == PodPhase.PENDING
        assert status.total == 2
        assert not status.is_ready

    def test_scheduled_not_ready(self):
        status = summarize_pods([make_pod(ready=False), make_pod(scheduled=False, ready=False)], expected=2)
        assert status.phase == PodPhase.PROGRESSING
        assert status.scheduled == 1
        assert status.ready == 0

    def test_surplus_pods_do_not_exceed_total(self):
        # Anciens pods encore présents pendant un rolling update
        status = summarize_pods([make_pod(), make_pod(), make_pod()], expected=2)
        assert status.ready == 2
        assert status.is_ready

    @pytest.mark.parametrize("reason", ["ImagePullBackOff", "ErrImagePull", "CreateContainerConfigError"])
    def test_fatal_waiting_reasons(self, reason):
        status = summarize_pods([make_pod(ready=False, waiting=reason)], expected=1)
        assert status.failed
        assert reason in status.reason

    def test_crash_loop_below_threshold_is_progressing(self):
        status = summarize_pods([make_pod(ready=False, waiting="CrashLoopBackOff", restarts=1)], expected=1,
                                restart_threshold=3)
        assert status.phase == PodPhase.PROGRESSING

    def test_crash_loop_above_threshold_fails(self):
        status = summarize_pods([make_pod(ready=False, waiting="CrashLoopBackOff", restarts=3)], expected=1,
                                restart_threshold=3)
        assert status.failed

    def test_oom_killed_in_last_state(self):
        pod = make_pod(ready=False, terminated="OOMKilled", restarts=5)
        assert summarize_pods([pod], expected=1).failed

    def test_failed_pod_phase(self):
        pod = make_pod(ready=False, phase="Failed", reason="Evicted")
        status = summarize_pods([pod], expected=1)
        assert status.failed
        assert status.reason == "Evicted"

    def test_helm_total_is_observed_pods(self):
        status = summarize_pods([make_pod(), make_pod(ready=False)], expected=None)
        assert status.total == 2
        assert status.ready == 1


class TestPollInterval:
    def test_cadence(self):
        pending = PodStatus(total=2)
        scheduled = PodStatus(scheduled=2, total=2, phase=PodPhase.PROGRESSING)
        ready = PodStatus(scheduled=2, ready=2, total=2, phase=PodPhase.READY)
        assert next_poll_interval(pending, 0.5, 2.0, 30.0) == 0.5
        assert next_poll_interval(scheduled, 0.5, 2.0, 30.0) == 2.0
        assert next_poll_interval(ready, 0.5, 2.0, 30.0) == 30.0


class TestRolloutTracker:
    def setup_method(self):
        self.k8s = FakeK8sClient()
        self.tracker = RolloutTracker(self.k8s, restart_threshold=3)
        self.app = SimpleNamespace(id=1, namespace="app-web")
        self.deployment = SimpleNamespace(id=5, app_id=1)

    def test_expected_replicas_from_config(self):
        self.k8s.pods = [make_pod()]
        config = DeploymentConfig(source=ImageSource(image="nginx"), replicas=2)
        status = self.tracker.observe(self.app, self.deployment, config)
        assert status.total == 2
        assert status.phase == PodPhase.PROGRESSING

    def test_helm_release(self):
        self.k8s.pods = [make_pod()]
        config = DeploymentConfig(source=HelmSource(chart="bitnami/redis"))
        assert self.tracker.observe(self.app, self.deployment, config).is_ready

    def test_unreachable_platform_is_transient(self):
        self.k8s.unreachable = True
        config = DeploymentConfig(source=ImageSource(image="nginx"), replicas=1)
        with pytest.raises(TransientObservationError):
            self.tracker.observe(self.app, self.deployment, config)
