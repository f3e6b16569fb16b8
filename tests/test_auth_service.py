from datetime import timedelta

import pytest

from orchestrator.api.schemas.auth import UserCreate
from orchestrator.core.exceptions import AuthenticationError, ValidationError
from orchestrator.models.user import UserRole
from orchestrator.repositories.user_repository import UserRepository
from orchestrator.services.auth_service import AuthService


@pytest.fixture
def auth(db):
    return AuthService(UserRepository(db), secret_key="test-secret", access_token_expire_minutes=5)


@pytest.fixture
def carol(auth):
    return auth.register(UserCreate(username="carol", email="carol@example.com", password="hunter22"))


def test_register_hashes_password(carol):
    assert carol.role == UserRole.USER
    assert carol.hashed_password != "hunter22"


def test_register_rejects_taken_username_or_email(auth, carol):
    with pytest.raises(ValidationError):
        auth.register(UserCreate(username="carol", email="other@example.com", password="hunter22"))
    with pytest.raises(ValidationError):
        auth.register(UserCreate(username="carol2", email="carol@example.com", password="hunter22"))


def test_login_issues_token_for_user(auth, carol):
    token = auth.login("carol", "hunter22")
    assert token.expires_in == 300
    assert auth.user_from_token(token.access_token).id == carol.id


def test_login_rejects_bad_credentials(auth, carol):
    with pytest.raises(AuthenticationError):
        auth.login("carol", "wrong-password")
    with pytest.raises(AuthenticationError):
        auth.login("nobody", "hunter22")


def test_expired_or_forged_token(auth, carol):
    expired = auth.issue_token(carol, ttl=timedelta(seconds=-1))
    with pytest.raises(AuthenticationError):
        auth.user_from_token(expired)
    with pytest.raises(AuthenticationError):
        auth.user_from_token("not-a-jwt")


def test_deactivated_user_is_rejected(auth, carol, db):
    token = auth.issue_token(carol)
    carol.is_active = False
    db.commit()
    with pytest.raises(AuthenticationError):
        auth.login("carol", "hunter22")
    with pytest.raises(AuthenticationError):
        auth.user_from_token(token)
