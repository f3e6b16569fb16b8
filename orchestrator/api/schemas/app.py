from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from orchestrator.api.schemas.config import ConfigDelta, DeploymentConfig
from orchestrator.api.schemas.deployment import DeploymentResponse


class AppCreate(BaseModel):
    organization_id: int
    name: str = Field(min_length=1, max_length=100)
    display_name: Optional[str] = None
    # Déduit du nom si absent
    namespace: Optional[str] = None
    app_group_id: Optional[int] = None
    cd_enabled: bool = True
    config: DeploymentConfig


class AppResponse(BaseModel):
    id: int
    organization_id: int
    app_group_id: Optional[int] = None
    name: str
    display_name: str
    namespace: str
    cd_enabled: bool
    active_deployment_id: Optional[int] = None
    sensitive_env_names: List[str] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CdToggle(BaseModel):
    enabled: bool


class ConfigUpdate(BaseModel):
    delta: ConfigDelta


class Availability(BaseModel):
    subdomain: Optional[bool] = None
    namespace: Optional[bool] = None


class AppCreated(BaseModel):
    app: AppResponse
    deployment: DeploymentResponse
