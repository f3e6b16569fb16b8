from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from orchestrator.api.schemas.auth import Token, UserCreate
from orchestrator.core.exceptions import AuthenticationError, ValidationError
from orchestrator.models.user import User, UserRole
from orchestrator.repositories.user_repository import UserRepository


class AuthService:
    """Comptes utilisateurs et jetons JWT.

    Le jeton porte l'id de l'utilisateur (`sub`) : un renommage ne l'invalide pas.
    """

    def __init__(self, user_repository: UserRepository, secret_key: str, algorithm: str = "HS256",
                 access_token_expire_minutes: int = 30):
        self.users = user_repository
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_ttl = timedelta(minutes=access_token_expire_minutes)

    def register(self, payload: UserCreate) -> User:
        """Nouveau compte, toujours avec le rôle USER"""
        if self.users.username_or_email_taken(payload.username, payload.email):
            raise ValidationError("Nom d'utilisateur ou email déjà utilisé")

        return self.users.create({
            "username": payload.username,
            "email": payload.email,
            "hashed_password": self.pwd_context.hash(payload.password),
            "role": UserRole.USER,
            "is_active": True,
        })

    def login(self, username: str, password: str) -> Token:
        user = self.users.get_by_field("username", username)
        if user is None or not user.is_active or not self.pwd_context.verify(password, user.hashed_password):
            raise AuthenticationError("Identifiants incorrects")
        return Token(
            access_token=self.issue_token(user),
            expires_in=int(self.token_ttl.total_seconds()),
        )

    def issue_token(self, user: User, ttl: Optional[timedelta] = None) -> str:
        claims = {
            "sub": str(user.id),
            "role": user.role.value,
            "exp": datetime.utcnow() + (ttl or self.token_ttl),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def user_from_token(self, token: str) -> User:
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            user_id = int(claims["sub"])
        except (JWTError, KeyError, ValueError):
            raise AuthenticationError("Jeton invalide ou expiré")

        user = self.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("Utilisateur inconnu ou désactivé")
        return user
