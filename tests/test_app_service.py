import pytest

from orchestrator.api.schemas.app import AppCreate
from orchestrator.api.schemas.config import ConfigDelta, DeploymentConfig, ImageSource
from orchestrator.api.schemas.deployment import PodPhase, PodStatus
from orchestrator.core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from orchestrator.models.app import App
from orchestrator.models.claim import ClaimKind, ResourceClaim
from orchestrator.models.deployment import Deployment, DeploymentStatus as S
from orchestrator.models.user import User

READY = PodStatus(scheduled=1, ready=1, total=1, phase=PodPhase.READY)


def ingress_config(subdomain):
    return DeploymentConfig(source=ImageSource(image="nginx:1.27"), port=80, create_ingress=True,
                            subdomain=subdomain)


class TestCreateApp:
    def test_default_namespace_is_claimed(self, create_app, app_service):
        app, deployment = create_app(name="My Web")
        assert app.namespace == "app-my-web"
        assert app.display_name == "My Web"
        assert app_service.claims.owner_of(ClaimKind.NAMESPACE, "app-my-web") == app.id
        assert deployment.app_id == app.id

    def test_namespace_already_used(self, create_app):
        create_app(name="web")
        with pytest.raises(ValidationError):
            create_app(name="web")

    def test_namespace_race_on_app_row_is_a_conflict(self, db, create_app, organization):
        # Ligne App déjà insérée par une création concurrente, claim pas encore posé
        db.add(App(organization_id=organization.id, name="race", display_name="race", namespace="app-race",
                   cd_enabled=True, sensitive_env_names=[]))
        db.commit()

        with pytest.raises(ConflictError) as excinfo:
            create_app(name="race")
        assert excinfo.value.retryable
        assert excinfo.value.status_code == 409
        assert db.query(App).count() == 1
        assert db.query(ResourceClaim).count() == 0

    def test_invalid_namespace(self, create_app):
        with pytest.raises(ValidationError):
            create_app(name="web", namespace="Not_Valid")

    def test_subdomain_taken_by_another_app(self, db, create_app):
        create_app(name="shop", config=ingress_config("shop"))
        with pytest.raises(ValidationError):
            create_app(name="shop-copy", config=ingress_config("shop"))
        assert db.query(App).count() == 1

    def test_app_group_must_belong_to_organization(self, db, create_app, app_service, organization):
        group = app_service.organizations.create_group(organization.id, "frontends")
        app, _ = create_app(name="web", app_group_id=group.id)
        assert app.app_group.name == "frontends"

        with pytest.raises(ValidationError):
            create_app(name="api", app_group_id=group.id + 1)
        assert db.query(App).count() == 1

    def test_invalid_config_creates_nothing(self, db, create_app):
        with pytest.raises(ValidationError):
            create_app(config=DeploymentConfig(source=ImageSource(image="nginx"), port=0))
        assert db.query(App).count() == 0
        assert db.query(ResourceClaim).count() == 0

    def test_outsider_cannot_create(self, db, app_service, organization):
        stranger = User(username="bob", email="bob@example.com", hashed_password="x")
        db.add(stranger)
        db.commit()
        payload = AppCreate(organization_id=organization.id, name="web",
                            config=DeploymentConfig(source=ImageSource(image="nginx")))
        with pytest.raises(PermissionDeniedError):
            app_service.create_app(stranger, payload)


class TestClaims:
    def test_old_subdomain_released_once_new_one_is_live(self, create_app, app_service, deployment_service,
                                                         state_machine):
        app, first = create_app(config=ingress_config("shop"))
        state_machine.apply_pod_status(first, READY)

        second = deployment_service.update_config(app, ConfigDelta(subdomain="store"))
        # Les deux restent réservés tant que le nouveau n'est pas actif
        assert not app_service.availability(subdomain="shop").subdomain
        assert not app_service.availability(subdomain="store").subdomain

        state_machine.apply_pod_status(second, READY)
        assert second.status == S.COMPLETE
        assert app_service.availability(subdomain="shop").subdomain
        assert not app_service.availability(subdomain="store").subdomain

    def test_availability(self, create_app, app_service):
        create_app(name="web", config=ingress_config("shop"))
        assert app_service.availability(subdomain="shop").subdomain is False
        assert app_service.availability(subdomain="Bad_Name").subdomain is False
        assert app_service.availability(subdomain="free").subdomain is True
        assert app_service.availability(namespace="app-web").namespace is False
        assert app_service.availability(namespace="app-other").namespace is True
        assert app_service.availability(namespace="app-other").subdomain is None


class TestLifecycle:
    def test_toggle_cd(self, create_app, app_service):
        app, _ = create_app()
        assert app_service.set_cd_enabled(app, False).cd_enabled is False

    def test_delete_app(self, db, create_app, app_service, k8s_client, git_config, build_client):
        app, deployment = create_app(config=DeploymentConfig(
            source=git_config.source, port=80, create_ingress=True, subdomain="shop",
        ))
        job_name = deployment.build_job_id
        namespace = app.namespace

        app_service.delete_app(app)

        assert k8s_client.deleted_namespaces == [namespace]
        assert build_client.cancelled == [job_name]
        assert db.query(App).count() == 0
        assert db.query(Deployment).count() == 0
        assert app_service.availability(subdomain="shop", namespace=namespace).subdomain is True
        assert app_service.availability(namespace=namespace).namespace is True
