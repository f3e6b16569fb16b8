import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from orchestrator.api.schemas.config import ConfigDelta, DeploymentConfig
from orchestrator.models.deployment import DeploymentStatus, TemplateMode, TriggerKind


class PodPhase(str, enum.Enum):
    PENDING = "Pending"
    PROGRESSING = "Progressing"
    READY = "Ready"
    FAILED = "Failed"


class PodStatus(BaseModel):
    """Résumé de l'état des pods d'un déploiement"""

    scheduled: int = 0
    ready: int = 0
    total: int = 0
    phase: PodPhase = PodPhase.PENDING
    reason: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.total > 0 and self.ready == self.total

    @property
    def all_scheduled(self) -> bool:
        return self.total > 0 and self.scheduled >= self.total

    @property
    def failed(self) -> bool:
        return self.phase == PodPhase.FAILED


class DeploymentCreate(BaseModel):
    """Création explicite (config complète) ou redeploy depuis un modèle"""

    config: Optional[DeploymentConfig] = None
    template_deployment_id: Optional[int] = None
    delta: Optional[ConfigDelta] = None
    mode: TemplateMode = TemplateMode.REUSE_BUILD
    commit_hash: Optional[str] = None

    @model_validator(mode="after")
    def check_exclusive(self):
        if self.config is not None and (self.template_deployment_id is not None or self.delta is not None):
            raise ValueError("config est incompatible avec template_deployment_id et delta")
        return self


class DeploymentResponse(BaseModel):
    id: int
    app_id: int
    status: DeploymentStatus
    status_reason: Optional[str] = None
    trigger_kind: TriggerKind
    template_deployment_id: Optional[int] = None
    template_mode: Optional[TemplateMode] = None
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    image_ref: Optional[str] = None
    awaiting_workflow: bool = False
    pod_status: Optional[PodStatus] = None
    config: Dict[str, Any]
    created_at: datetime
    status_changed_at: Optional[datetime] = None


class DeploymentPage(BaseModel):
    items: List[DeploymentResponse]
    page: int
    length: int
    total: int


class BuildOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class BuildCallback(BaseModel):
    deployment_id: int
    outcome: BuildOutcome
    image_ref: Optional[str] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def check_image(self):
        if self.outcome == BuildOutcome.SUCCESS and not self.image_ref:
            raise ValueError("image_ref est requis quand le build réussit")
        return self
