from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from typing import Optional
import os
from pathlib import Path

root_dir = Path(__file__).parent.parent
env_path = root_dir / ".env"
load_dotenv(env_path)


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Deployment Orchestrator"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    BASE_URL: str = "http://localhost:8000"

    # Database (DATABASE_URL prioritaire, sinon PostgreSQL via POSTGRES_*)
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_HOST: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "orchestrator"

    # Security (JWT)
    SECRET_KEY: str = "your-secret-key-change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 600

    # Chiffrement des variables d'environnement sensibles (clé Fernet)
    FIELD_ENCRYPTION_KEY: str = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="

    # Registry / builds
    REGISTRY_HOSTNAME: str = "registry.local"
    REGISTRY_PROJECT: str = "apps"
    BUILDER_NAMESPACE: str = "orchestrator-builds"
    BUILDER_IMAGE_PREFIX: str = "registry.local/orchestrator"
    BUILD_TIMEOUT_SECONDS: int = 1800

    # Cluster
    NAMESPACE_PREFIX: str = "app-"
    INGRESS_DOMAIN: str = "apps.local"
    INGRESS_CLASS: str = "nginx"

    # GitHub
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_WEBHOOK_SECRET: Optional[str] = None

    # Suivi du rollout
    ROLLOUT_TIMEOUT_SECONDS: int = 900
    ROLLOUT_SETTLE_OBSERVATIONS: int = 2
    POLL_INTERVAL_FRESH: float = 0.5
    POLL_INTERVAL_SCHEDULED: float = 2.0
    POLL_INTERVAL_STABLE: float = 30.0
    POLL_BACKOFF_MAX: float = 60.0
    CRASHLOOP_RESTART_THRESHOLD: int = 3

    # Worker
    ENABLE_WORKER: bool = True
    WORKER_TICK_SECONDS: float = 0.5

    # Database URL
    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.POSTGRES_HOST:
            return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        return "sqlite:///./orchestrator.db"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=True)


try:
    settings = Settings()
except Exception as e:
    print(f"❌ Settings creation failed: {e}")
    print(f"❌ Available environment variables:")
    for key, value in os.environ.items():
        if any(prefix in key for prefix in ['POSTGRES', 'DATABASE', 'GITHUB', 'REGISTRY', 'APP', 'DEBUG']):
            print(f"   {key}: {'*' * min(8, len(value)) if 'KEY' in key or 'PASSWORD' in key or 'TOKEN' in key or 'SECRET' in key else value}")
    raise
