import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["ENABLE_WORKER"] = "false"

import pytest
from cryptography.fernet import Fernet
from sqlalchemy.orm import sessionmaker

import orchestrator.models  # noqa: F401
from orchestrator.api.schemas.app import AppCreate
from orchestrator.api.schemas.config import DeploymentConfig, GitSource, ImageSource
from orchestrator.core.crypto import SecretBox
from orchestrator.core.database import Base, build_engine
from orchestrator.models.organization import Organization, OrgMembership
from orchestrator.models.user import User, UserRole
from orchestrator.services.app_service import AppService
from orchestrator.services.deployment_service import DeploymentService
from orchestrator.services.deployment_state_machine import DeploymentStateMachine
from tests.fakes import FakeBuildClient, FakeGitHubClient, FakeHelmClient, FakeK8sClient


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'orchestrator.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def secret_box():
    return SecretBox(Fernet.generate_key().decode())


@pytest.fixture
def k8s_client():
    return FakeK8sClient()


@pytest.fixture
def build_client():
    return FakeBuildClient()


@pytest.fixture
def helm_client():
    return FakeHelmClient()


@pytest.fixture
def github_client():
    return FakeGitHubClient()


@pytest.fixture
def state_machine_factory(k8s_client, build_client, helm_client, secret_box):
    def factory(session):
        return DeploymentStateMachine(session, k8s_client, build_client, helm_client, secret_box)

    return factory


@pytest.fixture
def state_machine(db, state_machine_factory):
    return state_machine_factory(db)


@pytest.fixture
def deployment_service(db, state_machine, secret_box, github_client):
    return DeploymentService(db, state_machine, secret_box, github_client=github_client)


@pytest.fixture
def app_service(db, deployment_service, k8s_client):
    return AppService(db, deployment_service, k8s_client, namespace_prefix="app-")


@pytest.fixture
def user(db):
    user = User(username="alice", email="alice@example.com", hashed_password="x", role=UserRole.USER)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def organization(db, user):
    org = Organization(name="acme")
    org.memberships.append(OrgMembership(user_id=user.id))
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


@pytest.fixture
def create_app(app_service, user, organization):
    """Crée une app et son premier déploiement"""

    def factory(name="web", config=None, **kwargs):
        payload = AppCreate(
            organization_id=organization.id,
            name=name,
            config=config or DeploymentConfig(source=ImageSource(image="nginx:1.27"), port=80),
            **kwargs
        )
        return app_service.create_app(user, payload)

    return factory


@pytest.fixture
def git_config():
    return DeploymentConfig(source=GitSource(repository_id=42, branch="main"), port=3000)
