import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel


class DeploymentStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    PENDING = "PENDING"
    BUILDING = "BUILDING"
    DEPLOYING = "DEPLOYING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"
    STOPPED = "STOPPED"


IN_FLIGHT_STATUSES = (
    DeploymentStatus.QUEUED,
    DeploymentStatus.PENDING,
    DeploymentStatus.BUILDING,
    DeploymentStatus.DEPLOYING,
)
CANCELLABLE_STATUSES = (
    DeploymentStatus.QUEUED,
    DeploymentStatus.PENDING,
    DeploymentStatus.BUILDING,
)
# Statuts éligibles pour active_deployment_id
SERVING_STATUSES = (DeploymentStatus.COMPLETE, DeploymentStatus.STOPPED)


class TriggerKind(str, enum.Enum):
    GIT_PUSH = "git_push"
    GIT_WORKFLOW_RUN = "git_workflow_run"
    MANUAL = "manual"
    CONFIG_UPDATE = "config_update"


class TemplateMode(str, enum.Enum):
    REUSE_BUILD = "reuse_build"
    REUSE_CONFIG = "reuse_config"


class Deployment(BaseModel):
    __tablename__ = "deployments"

    app_id = Column(Integer, ForeignKey("apps.id", ondelete="CASCADE"), nullable=False, index=True)

    # Statut
    status = Column(Enum(DeploymentStatus), default=DeploymentStatus.QUEUED, nullable=False, index=True)
    status_reason = Column(Text, nullable=True)
    status_changed_at = Column(DateTime, nullable=True)
    pod_status = Column(JSON, nullable=True)

    # Snapshot de la config résolue (valeurs sensibles chiffrées)
    config = Column(JSON, nullable=False)

    # Déclencheur
    trigger_kind = Column(Enum(TriggerKind), nullable=False)
    template_deployment_id = Column(Integer, ForeignKey("deployments.id", ondelete="SET NULL"), nullable=True)
    template_mode = Column(Enum(TemplateMode), nullable=True)

    # Source
    commit_hash = Column(String(64), nullable=True)
    commit_message = Column(Text, nullable=True)
    image_ref = Column(String(512), nullable=True)
    workflow_run_id = Column(Integer, nullable=True)
    awaiting_workflow = Column(Boolean, default=False, nullable=False)

    # Build
    build_secret = Column(String(64), nullable=True)
    build_job_id = Column(String(255), nullable=True)

    app = relationship("App", back_populates="deployments", foreign_keys=[app_id])

    def __repr__(self):
        return f"<Deployment(id={self.id}, app_id={self.app_id}, status='{self.status}')>"
