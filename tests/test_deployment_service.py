import pytest

from orchestrator.api.schemas.config import (
    ConfigDelta,
    DeploymentConfig,
    EnvVar,
    GitSource,
    ImageSource,
    TriggerEvent,
)
from orchestrator.api.schemas.deployment import DeploymentCreate, PodPhase, PodStatus
from orchestrator.core.exceptions import AppNotFoundError, DeploymentNotFoundError, ValidationError
from orchestrator.models.deployment import DeploymentStatus as S, TemplateMode, TriggerKind
from orchestrator.models.user import User
from orchestrator.services.trigger_ingestion import GitEvent, Rejected

READY = PodStatus(scheduled=1, ready=1, total=1, phase=PodPhase.READY)


def complete(state_machine, deployment):
    state_machine.apply_pod_status(deployment, READY, settled=True)
    assert deployment.status == S.COMPLETE


def built(deployment_service, deployment, image_ref="registry.local/apps/web:abc123"):
    deployment_service.build_callback(deployment.id, deployment.build_secret, True, image_ref=image_ref)
    return deployment


class TestSecrets:
    def test_sensitive_values_are_encrypted_and_redacted(self, db, create_app, deployment_service):
        config = DeploymentConfig(
            source=ImageSource(image="nginx:1.27"),
            env=[EnvVar(name="TOKEN", value="s3cret", is_sensitive=True), EnvVar(name="MODE", value="prod")],
        )
        app, deployment = create_app(config=config)

        stored = {var["name"]: var["value"] for var in deployment.config["env"]}
        assert stored["TOKEN"] != "s3cret"
        assert stored["MODE"] == "prod"

        opened = deployment_service.current_config(app)
        assert opened.env[0] == EnvVar(name="TOKEN", value="s3cret", is_sensitive=True)

        response = deployment_service.to_response(deployment)
        assert response.config["env"][0] == {"name": "TOKEN", "value": None, "is_sensitive": True}
        assert response.config["env"][1]["value"] == "prod"

        db.refresh(app)
        assert app.sensitive_env_names == ["TOKEN"]

    def test_locked_name_survives_config_updates(self, create_app, deployment_service, state_machine):
        config = DeploymentConfig(
            source=ImageSource(image="nginx:1.27"),
            env=[EnvVar(name="TOKEN", value="s3cret", is_sensitive=True)],
        )
        app, deployment = create_app(config=config)
        complete(state_machine, deployment)

        with pytest.raises(ValidationError):
            deployment_service.update_config(
                app, ConfigDelta(env=[EnvVar(name="TOKEN", value="s3cret", is_sensitive=False)])
            )

        updated = deployment_service.update_config(
            app, ConfigDelta(env=[EnvVar(name="TOKEN", is_sensitive=True), EnvVar(name="DEBUG", value="1")])
        )
        env = {var.name: var for var in deployment_service.box.open_config(updated.config).env}
        assert env["TOKEN"].value == "s3cret"
        assert env["DEBUG"].value == "1"


class TestConfigUpdate:
    def test_config_only_change_reuses_build(self, create_app, git_config, deployment_service, state_machine,
                                             build_client):
        app, first = create_app(config=git_config)
        complete(state_machine, built(deployment_service, first))

        second = deployment_service.update_config(app, ConfigDelta(port=8080))
        assert second.trigger_kind == TriggerKind.CONFIG_UPDATE
        assert second.template_deployment_id == first.id
        assert second.status == S.DEPLOYING
        assert second.image_ref == first.image_ref
        assert second.commit_hash == first.commit_hash
        assert len(build_client.started) == 1

    def test_branch_change_rebuilds(self, create_app, git_config, deployment_service, state_machine,
                                    build_client):
        app, first = create_app(config=git_config)
        complete(state_machine, built(deployment_service, first))

        second = deployment_service.update_config(app, ConfigDelta(source={"kind": "git", "branch": "dev"}))
        assert second.status == S.BUILDING
        assert second.image_ref is None
        assert len(build_client.started) == 2

    def test_invalid_update_creates_nothing(self, create_app, deployment_service):
        app, first = create_app()
        with pytest.raises(ValidationError):
            deployment_service.update_config(app, ConfigDelta(port=70000))
        assert deployment_service.list_deployments(app).total == 1


class TestTemplates:
    @pytest.fixture
    def history(self, create_app, deployment_service, state_machine):
        config = DeploymentConfig(source=ImageSource(image="nginx:1.25"), port=80, create_ingress=True,
                                  subdomain="shop")
        app, first = create_app(config=config)
        complete(state_machine, first)
        second = deployment_service.update_config(app, ConfigDelta(
            source={"kind": "image", "image": "nginx:1.27"}, subdomain="store",
        ))
        complete(state_machine, second)
        return app, first, second

    def test_reuse_config_takes_historical_values(self, history, deployment_service):
        app, first, second = history
        third = deployment_service.create(app, DeploymentCreate(
            template_deployment_id=first.id, mode=TemplateMode.REUSE_CONFIG,
        ))
        config = deployment_service.box.open_config(third.config)
        assert config.subdomain == "shop"
        assert third.image_ref == "nginx:1.25"

    def test_reuse_build_keeps_current_values(self, history, deployment_service):
        app, first, second = history
        third = deployment_service.create(app, DeploymentCreate(
            template_deployment_id=first.id, mode=TemplateMode.REUSE_BUILD,
        ))
        config = deployment_service.box.open_config(third.config)
        assert config.subdomain == "store"
        assert third.image_ref == "nginx:1.25"
        assert third.template_mode == TemplateMode.REUSE_BUILD

    def test_cancelled_deployment_is_a_valid_template(self, create_app, git_config, deployment_service):
        app, first = create_app(config=git_config)
        deployment_service.cancel(app, first.id)
        second = deployment_service.create(app, DeploymentCreate(template_deployment_id=first.id))
        assert second.status == S.BUILDING
        assert second.template_deployment_id == first.id

    def test_template_from_another_app(self, create_app, deployment_service):
        app, first = create_app(name="web")
        other, other_first = create_app(name="api")
        with pytest.raises(DeploymentNotFoundError):
            deployment_service.create(app, DeploymentCreate(template_deployment_id=other_first.id))


class TestAccess:
    def test_non_member_cannot_see_app(self, db, create_app, deployment_service):
        app, _ = create_app()
        stranger = User(username="bob", email="bob@example.com", hashed_password="x")
        db.add(stranger)
        db.commit()
        with pytest.raises(AppNotFoundError):
            deployment_service.get_app(app.id, stranger)

    def test_listing_is_newest_first(self, create_app, deployment_service):
        app, first = create_app()
        second = deployment_service.create(app, DeploymentCreate())
        third = deployment_service.create(app, DeploymentCreate())

        page = deployment_service.list_deployments(app, page=0, length=2)
        assert [item.id for item in page.items] == [third.id, second.id]
        assert page.total == 3
        assert [item.id for item in deployment_service.list_deployments(app, page=1, length=2).items] == [first.id]


class TestGitEvents:
    def test_push_creates_deployment(self, create_app, git_config, deployment_service, state_machine):
        app, first = create_app(config=git_config)
        complete(state_machine, built(deployment_service, first))

        event = GitEvent(event=TriggerEvent.PUSH, repository_id=42, branch="main", commit_hash="f00",
                         commit_message="fix")
        [(app_id, deployment)] = deployment_service.handle_git_event(event)
        assert app_id == app.id
        assert deployment.trigger_kind == TriggerKind.GIT_PUSH
        assert deployment.commit_hash == "f00"
        assert deployment.status == S.BUILDING

    def test_push_with_cd_disabled(self, create_app, git_config, deployment_service):
        app, first = create_app(config=git_config, cd_enabled=False)
        event = GitEvent(event=TriggerEvent.PUSH, repository_id=42, branch="main", commit_hash="f00")
        [(app_id, result)] = deployment_service.handle_git_event(event)
        assert isinstance(result, Rejected)
        assert deployment_service.list_deployments(app).total == 1

    def test_unrelated_repository(self, create_app, git_config, deployment_service):
        create_app(config=git_config)
        event = GitEvent(event=TriggerEvent.PUSH, repository_id=7, branch="main", commit_hash="f00")
        assert deployment_service.handle_git_event(event) == []

    @pytest.fixture
    def gated_app(self, create_app, deployment_service):
        config = DeploymentConfig(source=GitSource(
            repository_id=42, branch="main", event=TriggerEvent.WORKFLOW_RUN, event_id=7,
        ))
        app, first = create_app(config=config)

        requested = GitEvent(event=TriggerEvent.WORKFLOW_RUN, repository_id=42, branch="main",
                             commit_hash="f00", action="requested", workflow_id=7, workflow_run_id=99)
        [(_, waiting)] = deployment_service.handle_git_event(requested)
        assert waiting.status == S.PENDING
        assert waiting.awaiting_workflow
        assert first.status == S.CANCELLED
        return app, waiting

    @staticmethod
    def completed(conclusion):
        return GitEvent(event=TriggerEvent.WORKFLOW_RUN, repository_id=42, branch="main", commit_hash="f00",
                        action="completed", workflow_id=7, workflow_run_id=99, conclusion=conclusion)

    def test_successful_workflow_releases_build(self, gated_app, deployment_service):
        app, waiting = gated_app
        [(_, released)] = deployment_service.handle_git_event(self.completed("success"))
        assert released.id == waiting.id
        assert released.status == S.BUILDING
        assert not released.awaiting_workflow

    def test_failed_workflow_cancels_and_is_reported_as_rejected(self, gated_app, deployment_service):
        app, waiting = gated_app
        [(app_id, result)] = deployment_service.handle_git_event(self.completed("failure"))
        assert app_id == app.id
        assert isinstance(result, Rejected)
        assert str(waiting.id) in result.reason
        assert waiting.status == S.CANCELLED
        assert not waiting.awaiting_workflow

    def test_completion_without_waiting_deployment(self, gated_app, deployment_service):
        deployment_service.handle_git_event(self.completed("success"))
        [(_, result)] = deployment_service.handle_git_event(self.completed("success"))
        assert isinstance(result, Rejected)

    def test_one_broken_app_does_not_block_the_others(self, db, create_app, git_config, deployment_service):
        broken, broken_first = create_app(name="a", config=git_config)
        healthy, _ = create_app(name="b", config=git_config)
        # Valeur sensible illisible : le déchiffrement échoue pour cette app seulement
        broken_first.config = {
            **broken_first.config,
            "env": [{"name": "TOKEN", "value": "not-a-fernet-token", "is_sensitive": True}],
        }
        db.commit()

        event = GitEvent(event=TriggerEvent.PUSH, repository_id=42, branch="main", commit_hash="f00")
        results = dict(deployment_service.handle_git_event(event))

        assert isinstance(results[broken.id], Rejected)
        assert "déchiffrer" in results[broken.id].reason
        assert results[healthy.id].commit_hash == "f00"
        assert results[healthy.id].status == S.BUILDING
        assert deployment_service.list_deployments(broken).total == 1
