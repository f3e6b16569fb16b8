import pytest

from orchestrator.models.deployment import Deployment, DeploymentStatus as S
from orchestrator.services.rollout_tracker import RolloutTracker
from orchestrator.workers.rollout_worker import RolloutWorker
from tests.fakes import make_pod


@pytest.fixture
def make_worker(session_factory, state_machine_factory, k8s_client):
    def factory(**kwargs):
        options = dict(
            tick_seconds=0,
            settle_observations=2,
            build_timeout=1800,
            rollout_timeout=900,
            poll_fresh=0,
            poll_scheduled=0,
            poll_stable=30,
            backoff_max=60,
        )
        options.update(kwargs)
        return RolloutWorker(
            session_factory=session_factory,
            state_machine_factory=state_machine_factory,
            tracker=RolloutTracker(k8s_client, restart_threshold=3),
            **options
        )

    return factory


def status_of(session_factory, deployment_id):
    with session_factory() as session:
        return session.get(Deployment, deployment_id).status


@pytest.mark.asyncio
async def test_completes_after_settled_observations(create_app, make_worker, k8s_client, session_factory):
    app, deployment = create_app()
    worker = make_worker()
    k8s_client.pods = [make_pod()]

    assert await worker.tick() == [deployment.id]
    assert status_of(session_factory, deployment.id) == S.DEPLOYING

    await worker.tick()
    assert status_of(session_factory, deployment.id) == S.COMPLETE
    with session_factory() as session:
        assert session.get(Deployment, deployment.id).app.active_deployment_id == deployment.id


@pytest.mark.asyncio
async def test_readiness_flap_resets_settle_streak(create_app, make_worker, k8s_client, session_factory):
    app, deployment = create_app()
    worker = make_worker()

    k8s_client.pods = [make_pod()]
    await worker.tick()
    k8s_client.pods = [make_pod(ready=False)]
    await worker.tick()
    k8s_client.pods = [make_pod()]
    await worker.tick()
    assert status_of(session_factory, deployment.id) == S.DEPLOYING


@pytest.mark.asyncio
async def test_crash_loop_fails_rollout(create_app, make_worker, k8s_client, session_factory):
    app, deployment = create_app()
    worker = make_worker()
    k8s_client.pods = [make_pod(ready=False, waiting="CrashLoopBackOff", restarts=5)]

    await worker.tick()
    assert status_of(session_factory, deployment.id) == S.ERROR


@pytest.mark.asyncio
async def test_unreachable_platform_backs_off(create_app, make_worker, k8s_client, session_factory):
    app, deployment = create_app()
    worker = make_worker(poll_fresh=0.5, backoff_max=4)
    k8s_client.unreachable = True

    await worker.tick()
    assert status_of(session_factory, deployment.id) == S.DEPLOYING
    assert worker._backoff[deployment.id] == 1.0
    # Pas encore dû
    assert await worker.tick() == []

    for _ in range(5):
        worker.observe(deployment.id)
    assert worker._backoff[deployment.id] == 4


@pytest.mark.asyncio
async def test_stale_build_expires(create_app, git_config, make_worker, session_factory, build_client):
    app, deployment = create_app(config=git_config)
    worker = make_worker(build_timeout=-1)

    await worker.tick()
    assert status_of(session_factory, deployment.id) == S.ERROR
    assert build_client.cancelled == [deployment.build_job_id]


@pytest.mark.asyncio
async def test_stale_rollout_expires(create_app, make_worker, session_factory):
    app, deployment = create_app()
    worker = make_worker(rollout_timeout=-1)

    assert await worker.tick() == []
    assert status_of(session_factory, deployment.id) == S.ERROR


@pytest.mark.asyncio
async def test_active_deployment_keeps_being_observed(create_app, make_worker, k8s_client, session_factory):
    app, deployment = create_app()
    worker = make_worker(settle_observations=1, poll_stable=0)
    k8s_client.pods = [make_pod()]

    await worker.tick()
    assert status_of(session_factory, deployment.id) == S.COMPLETE

    k8s_client.pods = [make_pod(ready=False)]
    assert await worker.tick() == [deployment.id]
    with session_factory() as session:
        refreshed = session.get(Deployment, deployment.id)
        assert refreshed.status == S.COMPLETE
        assert refreshed.pod_status["ready"] == 0
    assert worker.tracked_count == 1
